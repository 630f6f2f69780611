"""
SQLAlchemy database models.

Organized by domain:
- base: Base declarative class
- user: accounts and creator profiles
- membership: supporter grants and completed transactions
- billing: recurring subscriptions
- community: channels and local channel rosters
- notification: outbound email queue

Import any model from this module:
    from circle_access.db.models import Supporter, Subscription, Channel
"""

# Base class (must be imported first)
from .base import Base

from .user import User, CreatorProfile
from .membership import Supporter, SupporterTransaction
from .billing import Subscription
from .community import Channel, ChannelMember
from .notification import EmailQueue

__all__ = [
    "Base",
    "User",
    "CreatorProfile",
    "Supporter",
    "SupporterTransaction",
    "Subscription",
    "Channel",
    "ChannelMember",
    "EmailQueue",
]

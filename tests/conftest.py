import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SUBSCRIPTION_EXPIRY_ENABLED", "false")
os.environ.setdefault("STREAM_API_KEY", "test-key")
os.environ.setdefault("STREAM_API_SECRET", "test-secret")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from circle_access.db.models import (
    Base,
    Channel,
    ChannelMember,
    Subscription,
    Supporter,
    SupporterTransaction,
    User,
)
from circle_access.services.stream_chat import StreamChatError


class FakeStreamChat:
    """In-memory stand-in for StreamChatService; records every call."""

    def __init__(self) -> None:
        self.api_key = "test-key"
        self.users: Dict[str, Dict[str, Any]] = {}
        self.channels: Dict[str, Dict[str, Any]] = {}
        self.members: Dict[str, set] = {}
        self.messages: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        # stream channel id -> exception raised by member operations on it
        self.fail_on: Dict[str, Exception] = {}
        self.fail_create: Exception | None = None

    def create_user_token(self, user_id: str) -> str:
        return f"token-{user_id}"

    async def upsert_user(self, user_id, name, image=None):
        self.calls.append(("upsert_user", user_id))
        self.users[user_id] = {"id": user_id, "name": name or user_id, "image": image}

    async def get_or_create_channel(self, channel_id, data, members=None):
        self.calls.append(("get_or_create_channel", channel_id))
        if self.fail_create is not None:
            raise self.fail_create
        self.channels.setdefault(channel_id, dict(data))
        self.members.setdefault(channel_id, set()).update(members or [])
        return {"channel": {"id": channel_id}}

    async def add_members(self, channel_id, user_ids):
        self.calls.append(("add_members", channel_id, tuple(user_ids)))
        if channel_id in self.fail_on:
            raise self.fail_on[channel_id]
        self.members.setdefault(channel_id, set()).update(user_ids)

    async def remove_members(self, channel_id, user_ids):
        self.calls.append(("remove_members", channel_id, tuple(user_ids)))
        if channel_id in self.fail_on:
            raise self.fail_on[channel_id]
        self.members.setdefault(channel_id, set()).difference_update(user_ids)

    async def send_message(self, channel_id, text, user_id, message_type=None, custom=None):
        self.calls.append(("send_message", channel_id, user_id))
        self.messages.append(
            {
                "channel_id": channel_id,
                "text": text,
                "user_id": user_id,
                "type": message_type,
                "custom": custom or {},
            }
        )
        return {"message": {"text": text}}


@pytest.fixture
def chat() -> FakeStreamChat:
    return FakeStreamChat()


@pytest.fixture
def chat_error():
    return StreamChatError("Stream API returned 500", status_code=500)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture(autouse=True)
def no_redis_lock(monkeypatch):
    """Revocations run without Redis; the lock is always granted."""

    @asynccontextmanager
    async def _always_acquired(name, timeout=30, retry_count=3, retry_delay=0.5):
        yield True

    monkeypatch.setattr("circle_access.services.unsubscribe.advisory_lock", _always_acquired)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class Factory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def user(self, name: str, *, email: str | None = None, username: str | None = None) -> User:
        user = User(
            display_name=name,
            email=email or f"{name.lower()}@example.com",
            username=username or name.lower(),
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def channel(
        self,
        creator: User,
        name: str,
        *,
        min_tier: int = 1,
        stream_channel_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Channel:
        channel = Channel(
            creator_id=creator.id,
            name=name,
            min_tier_required=min_tier,
            stream_channel_id=stream_channel_id,
        )
        if created_at is not None:
            channel.created_at = created_at
        self.db.add(channel)
        await self.db.commit()
        return channel

    async def member(self, channel: Channel, user: User) -> ChannelMember:
        row = ChannelMember(channel_id=channel.id, user_id=user.id)
        self.db.add(row)
        await self.db.commit()
        return row

    async def subscription(
        self,
        supporter: User,
        creator: User,
        *,
        gateway: str = "esewa",
        status: str = "active",
        period_end: datetime | None = None,
        period_start: datetime | None = None,
        tier_level: int = 1,
        reminder_sent_at: dict | None = None,
    ) -> Subscription:
        sub = Subscription(
            supporter_id=supporter.id,
            creator_id=creator.id,
            tier_level=tier_level,
            amount_cents=50000,
            payment_gateway=gateway,
            status=status,
            current_period_start=period_start,
            current_period_end=period_end,
            reminder_sent_at=reminder_sent_at or {},
        )
        self.db.add(sub)
        await self.db.commit()
        return sub

    async def supporter(
        self,
        supporter: User,
        creator: User,
        *,
        tier_level: int = 1,
        is_active: bool = True,
        subscription: Subscription | None = None,
    ) -> Supporter:
        row = Supporter(
            supporter_id=supporter.id,
            creator_id=creator.id,
            tier_level=tier_level,
            is_active=is_active,
            subscription_id=subscription.id if subscription else None,
        )
        self.db.add(row)
        await self.db.commit()
        return row

    async def transaction(self, supporter: User, creator: User, *, status: str = "completed") -> SupporterTransaction:
        tx = SupporterTransaction(
            supporter_id=supporter.id,
            creator_id=creator.id,
            amount_cents=50000,
            payment_gateway="esewa",
            status=status,
        )
        self.db.add(tx)
        await self.db.commit()
        return tx


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)

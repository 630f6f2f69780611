import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.db.models import EmailQueue

log = logging.getLogger("notification_queue")

SUBSCRIPTION_EXPIRING_REMINDER = "subscription_expiring_reminder"
SUBSCRIPTION_EXPIRED = "subscription_expired"


async def queue_email(
    db: AsyncSession,
    *,
    email_type: str,
    recipient_email: str,
    payload: dict[str, Any],
    scheduled_for: datetime | None = None,
) -> EmailQueue:
    """Append a job to the email queue. Jobs are never updated from here."""
    job = EmailQueue(
        email_type=email_type,
        recipient_email=recipient_email,
        payload=payload,
        scheduled_for=scheduled_for or datetime.now(timezone.utc),
    )
    db.add(job)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    log.info(f"[EMAIL-QUEUE] queued type={email_type} to={recipient_email} job={job.id}")
    return job

"""
Subscription expiry sweep for poll-driven gateways (eSewa, Khalti).

These gateways never tell us a subscription lapsed, so each run compares the
stored period end with the wall clock:

- 2 days left: queue the "2_days" reminder once per billing period
- 1 day left:  queue the "1_day" reminder once per billing period
- 0 or less:   revoke through the unsubscribe coordinator, then queue the expired email

Push-driven gateways (Dodo) are cancelled from their webhook and never scanned
here. The sweep keeps no cursor: a record that fails is simply picked up again
on the next run.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from circle_access.core.config import settings
from circle_access.db.models import Subscription, User
from circle_access.schemas.subscription import ExpiryCheckResult
from circle_access.services.notification_queue import (
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRING_REMINDER,
    queue_email,
)
from circle_access.services.stream_chat import StreamChatService
from circle_access.services.unsubscribe import REASON_EXPIRED, unsubscribe_supporter
from circle_access.utils.auth import unsubscribe_url

log = logging.getLogger("subscription_expiry")

SECONDS_PER_DAY = 24 * 60 * 60

# days until expiry -> reminder marker key
REMINDER_THRESHOLDS = {
    2: "2_days",
    1: "1_day",
}


@dataclass
class ExpiryCandidate:
    id: str
    supporter_id: str
    creator_id: str
    tier_level: int
    current_period_start: datetime | None
    current_period_end: datetime
    reminder_sent_at: dict = field(default_factory=dict)
    supporter_email: str | None = None
    supporter_name: str = "Supporter"
    creator_name: str = "Creator"
    creator_username: str | None = None


def _as_utc(value: datetime) -> datetime:
    # Some drivers hand back naive datetimes for timestamptz columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until_expiry(period_end: datetime, now: datetime) -> int:
    """Whole days left, rounded up. Negative once the period is over."""
    delta = _as_utc(period_end) - _as_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def reminder_already_sent(candidate: ExpiryCandidate, key: str) -> bool:
    """A marker only counts for the billing period it was written in."""
    sent_at = (candidate.reminder_sent_at or {}).get(key)
    if not sent_at:
        return False
    if candidate.current_period_start is None:
        return True
    try:
        sent = _as_utc(datetime.fromisoformat(sent_at))
    except (TypeError, ValueError):
        return True
    return sent >= _as_utc(candidate.current_period_start)


def renew_url(candidate: ExpiryCandidate) -> str:
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    return f"{base}/creator/{candidate.creator_id}?renew=true&subscription_id={candidate.id}"


async def load_expiry_candidates(db: AsyncSession) -> list[ExpiryCandidate]:
    supporter_user = aliased(User)
    creator_user = aliased(User)

    rows = await db.execute(
        select(
            Subscription,
            supporter_user.email,
            supporter_user.display_name,
            creator_user.display_name,
            creator_user.username,
        )
        .outerjoin(supporter_user, supporter_user.id == Subscription.supporter_id)
        .outerjoin(creator_user, creator_user.id == Subscription.creator_id)
        .where(
            Subscription.status == "active",
            Subscription.payment_gateway.in_(settings.EXPIRY_POLL_GATEWAYS),
            Subscription.current_period_end.isnot(None),
        )
        .order_by(Subscription.current_period_end.asc())
        .execution_options(populate_existing=True)
    )

    return [
        ExpiryCandidate(
            id=sub.id,
            supporter_id=sub.supporter_id,
            creator_id=sub.creator_id,
            tier_level=sub.tier_level or 1,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            reminder_sent_at=dict(sub.reminder_sent_at or {}),
            supporter_email=email,
            supporter_name=supporter_name or "Supporter",
            creator_name=creator_name or "Creator",
            creator_username=creator_username,
        )
        for sub, email, supporter_name, creator_name, creator_username in rows.all()
    ]


async def _queue_reminder(db: AsyncSession, candidate: ExpiryCandidate, days: int) -> None:
    await queue_email(
        db,
        email_type=SUBSCRIPTION_EXPIRING_REMINDER,
        recipient_email=candidate.supporter_email,
        payload={
            "supporter_name": candidate.supporter_name,
            "creator_name": candidate.creator_name,
            "creator_username": candidate.creator_username,
            "creator_id": candidate.creator_id,
            "tier_level": candidate.tier_level,
            "expiry_date": _as_utc(candidate.current_period_end).isoformat(),
            "days_until_expiry": days,
            "renew_url": renew_url(candidate),
            "unsubscribe_url": unsubscribe_url(candidate.supporter_id, candidate.creator_id, candidate.supporter_email),
            "subscription_id": candidate.id,
        },
    )


async def _queue_expired(db: AsyncSession, candidate: ExpiryCandidate) -> None:
    await queue_email(
        db,
        email_type=SUBSCRIPTION_EXPIRED,
        recipient_email=candidate.supporter_email,
        payload={
            "supporter_name": candidate.supporter_name,
            "creator_name": candidate.creator_name,
            "creator_username": candidate.creator_username,
            "creator_id": candidate.creator_id,
            "tier_level": candidate.tier_level,
            "expiry_date": _as_utc(candidate.current_period_end).isoformat(),
            "renew_url": renew_url(candidate),
            "unsubscribe_url": unsubscribe_url(candidate.supporter_id, candidate.creator_id, candidate.supporter_email),
            "subscription_id": candidate.id,
        },
    )


async def _send_reminder(
    db: AsyncSession,
    candidate: ExpiryCandidate,
    days: int,
    now: datetime,
    result: ExpiryCheckResult,
) -> None:
    key = REMINDER_THRESHOLDS[days]
    if reminder_already_sent(candidate, key):
        log.debug(f"[EXPIRY] {key} reminder already sent for {candidate.id}")
        return

    if not candidate.supporter_email:
        result.errors.append(f"Subscription {candidate.id}: no recipient email for {key} reminder")
        return

    try:
        await _queue_reminder(db, candidate, days)
    except Exception as e:
        log.error(f"[EXPIRY] Failed to queue {key} reminder for {candidate.id}: {e}")
        result.errors.append(f"Subscription {candidate.id}: reminder queue failed: {e}")
        return

    result.reminders_sent += 1
    if days == 2:
        result.details.two_day_reminders += 1
    else:
        result.details.one_day_reminders += 1

    # Marker only after the job is queued. A lost marker write means a possible
    # duplicate email next run, never a missing one.
    markers = {**candidate.reminder_sent_at, key: now.isoformat()}
    try:
        await db.execute(
            update(Subscription).where(Subscription.id == candidate.id).values(reminder_sent_at=markers)
        )
        await db.commit()
        candidate.reminder_sent_at = markers
    except Exception as e:
        await db.rollback()
        log.warning(f"[EXPIRY] Failed to record {key} marker for {candidate.id}: {e}")


async def _expire(
    db: AsyncSession,
    candidate: ExpiryCandidate,
    days: int,
    result: ExpiryCheckResult,
    chat: StreamChatService | None,
) -> None:
    log.info(
        f"[EXPIRY] Expiring subscription {candidate.id} supporter={candidate.supporter_id} "
        f"creator={candidate.creator_id} days_overdue={abs(days)}"
    )

    unsub = await unsubscribe_supporter(
        db,
        candidate.supporter_id,
        candidate.creator_id,
        subscription_id=candidate.id,
        reason=REASON_EXPIRED,
        chat=chat,
    )
    if not unsub.success:
        # Record stays active and is retried next run.
        log.error(f"[EXPIRY] Failed to expire {candidate.id}: {unsub.error}")
        result.errors.append(f"Failed to expire {candidate.id}: {unsub.error}")
        return

    if not (unsub.subscription and unsub.subscription.status == "expired"):
        log.warning(f"[EXPIRY] Access revoked but billing record {candidate.id} not moved to expired")

    result.expired += 1
    result.details.expired_subscriptions += 1

    if not candidate.supporter_email:
        log.warning(f"[EXPIRY] No recipient email for expired notice on {candidate.id}")
        return
    try:
        await _queue_expired(db, candidate)
    except Exception as e:
        log.error(f"[EXPIRY] Failed to queue expired email for {candidate.id}: {e}")
        result.errors.append(f"Subscription {candidate.id}: expired email queue failed: {e}")


async def check_subscription_expiry(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    chat: StreamChatService | None = None,
) -> ExpiryCheckResult:
    """Run one sweep. Safe to run as often as needed."""
    result = ExpiryCheckResult()
    now = _as_utc(now or datetime.now(timezone.utc))

    log.info("[EXPIRY] Starting subscription expiry check")
    try:
        candidates = await load_expiry_candidates(db)
    except Exception as e:
        log.exception(f"[EXPIRY] Failed to fetch subscriptions for expiry check: {e}")
        result.errors.append(f"Database fetch error: {e}")
        return result

    if not candidates:
        log.info("[EXPIRY] No active poll-driven subscriptions to check")
        return result

    result.checked = len(candidates)
    log.info(f"[EXPIRY] Checking {len(candidates)} subscriptions")

    for candidate in candidates:
        try:
            days = days_until_expiry(candidate.current_period_end, now)
            log.debug(f"[EXPIRY] subscription={candidate.id} days_until_expiry={days}")

            if days in REMINDER_THRESHOLDS:
                await _send_reminder(db, candidate, days, now, result)
            elif days <= 0:
                await _expire(db, candidate, days, result, chat)
        except Exception as e:
            await db.rollback()
            log.error(f"[EXPIRY] Error processing subscription {candidate.id}: {e}", exc_info=True)
            result.errors.append(f"Subscription {candidate.id}: {e}")

    log.info(
        f"[EXPIRY] Check complete: checked={result.checked} reminders={result.reminders_sent} "
        f"expired={result.expired} errors={len(result.errors)}"
    )
    return result

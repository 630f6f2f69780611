"""
Unsubscribe coordinator.

The only path that revokes a supporter's access to a creator, whatever the
trigger (settings UI, push-gateway webhook, expiry sweep):

1. deactivate the supporter grant (fatal on write failure)
2. cancel the linked billing record when it is active
3. remove the supporter from every provisioned channel of the creator
4. turn off notification emails on their completed transactions
5. recompute the creator's supporter count

Steps 2-5 are best-effort; their failures are collected in the result.
Grants are never deleted.
"""
import logging
from datetime import datetime, timezone

from redis.exceptions import RedisError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.core.config import settings
from circle_access.db.models import Channel, ChannelMember, Subscription, SupporterTransaction
from circle_access.schemas.subscription import (
    ChannelRemoval,
    EmailNotificationSuppression,
    SubscriptionCancellation,
    SupporterSummary,
    UnsubscribeResult,
)
from circle_access.services.channel_sync import remove_member
from circle_access.services.stream_chat import StreamChatService
from circle_access.services.supporters import get_supporter, update_supporter_count
from circle_access.utils.concurrency import advisory_lock

log = logging.getLogger("unsubscribe")

REASON_EXPIRED = "expired"
REASON_USER_REQUESTED = "user_requested"
REASON_EMAIL_UNSUBSCRIBE = "email_unsubscribe"


def _now():
    return datetime.now(timezone.utc)


async def _cancel_billing_record(
    db: AsyncSession,
    subscription_id: str,
    reason: str | None,
) -> SubscriptionCancellation:
    sub = await db.get(Subscription, subscription_id)
    if sub is None:
        return SubscriptionCancellation(cancelled=False, subscription_id=subscription_id)
    if sub.status != "active":
        return SubscriptionCancellation(cancelled=False, subscription_id=sub.id, status=sub.status)

    # Time-based lapses are reported apart from user cancellations.
    new_status = "expired" if reason == REASON_EXPIRED else "cancelled"
    sub.status = new_status
    sub.cancelled_at = _now()
    sub.cancel_at_period_end = False
    sub.cancel_reason = reason
    await db.commit()

    log.info(f"[UNSUBSCRIBE] Billing record {subscription_id} -> {new_status}")
    return SubscriptionCancellation(cancelled=True, subscription_id=subscription_id, status=new_status)


async def _remove_from_channels(
    db: AsyncSession,
    supporter_id: str,
    creator_id: str,
    chat: StreamChatService | None,
) -> ChannelRemoval:
    # Every channel of the creator, not only those the current tier unlocks.
    rows = await db.execute(
        select(Channel.id, Channel.stream_channel_id).where(Channel.creator_id == creator_id)
    )
    channels = rows.all()

    removal = ChannelRemoval()
    processed: list[str] = []
    for channel_id, stream_channel_id in channels:
        if not stream_channel_id:
            # Nothing remote to undo; the local roster row can go.
            processed.append(channel_id)
            continue

        result = await remove_member(db, channel_id, supporter_id, chat=chat)
        if result.success:
            removal.channel_ids.append(channel_id)
            processed.append(channel_id)
        else:
            removal.failed_channel_ids.append(channel_id)
            removal.errors.append(f"{channel_id}: {result.error}")
    removal.removed_from = len(removal.channel_ids)

    if processed:
        try:
            await db.execute(
                delete(ChannelMember).where(
                    ChannelMember.user_id == supporter_id,
                    ChannelMember.channel_id.in_(processed),
                )
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            log.warning(f"[UNSUBSCRIBE] Failed to clear channel_members for {supporter_id}: {e}")
            removal.errors.append(f"channel_members cleanup: {e}")

    return removal


async def _disable_email_notifications(
    db: AsyncSession,
    supporter_id: str,
    creator_id: str,
) -> EmailNotificationSuppression:
    result = await db.execute(
        update(SupporterTransaction)
        .where(
            SupporterTransaction.supporter_id == supporter_id,
            SupporterTransaction.creator_id == creator_id,
            SupporterTransaction.status == "completed",
        )
        .values(email_notifications_enabled=False)
    )
    await db.commit()
    return EmailNotificationSuppression(disabled=True, affected_transactions=result.rowcount or 0)


async def process_unsubscribe(
    db: AsyncSession,
    supporter_id: str,
    creator_id: str,
    *,
    subscription_id: str | None = None,
    cancel_subscription: bool = True,
    remove_from_channels: bool = True,
    disable_email_notifications: bool = True,
    reason: str | None = None,
    chat: StreamChatService | None = None,
) -> UnsubscribeResult:
    """
    Revoke access for (supporter, creator). Safe to repeat: a second call sees
    was_active=False and leaves everything as it is.

    Args:
        subscription_id: billing record to cancel when the grant does not link one
            (the expiry sweep passes the record it is expiring).
        reason: stored as cancel_reason; "expired" tags the billing record as expired.
    """
    result = UnsubscribeResult(success=False)

    # Step 1: deactivate the grant. Everything after assumes access is revoked.
    try:
        supporter = await get_supporter(db, supporter_id, creator_id)
        if supporter is None:
            log.warning(
                f"[UNSUBSCRIBE] No supporter row for supporter={supporter_id} creator={creator_id}, continuing"
            )
        else:
            result.was_active = bool(supporter.is_active)
            result.supporter = SupporterSummary(
                id=supporter.id,
                supporter_id=supporter_id,
                creator_id=creator_id,
                was_active=result.was_active,
                tier_level=supporter.tier_level or 1,
            )
            subscription_id = subscription_id or supporter.subscription_id
            if supporter.is_active:
                supporter.is_active = False
                await db.commit()
            log.info(
                f"[UNSUBSCRIBE] Supporter deactivated supporter={supporter_id} creator={creator_id} "
                f"was_active={result.was_active}"
            )
    except Exception as e:
        await db.rollback()
        log.error(f"[UNSUBSCRIBE] Failed to deactivate supporter={supporter_id} creator={creator_id}: {e}")
        result.error = f"Failed to deactivate supporter: {e}"
        return result

    # Step 2
    if cancel_subscription and subscription_id:
        try:
            result.subscription = await _cancel_billing_record(db, subscription_id, reason)
        except Exception as e:
            await db.rollback()
            log.error(f"[UNSUBSCRIBE] Failed to cancel billing record {subscription_id}: {e}")
            result.errors.append(f"subscription: {e}")

    # Step 3
    if remove_from_channels:
        try:
            result.channels = await _remove_from_channels(db, supporter_id, creator_id, chat)
            if result.channels.failed_channel_ids:
                log.warning(
                    f"[UNSUBSCRIBE] Channel removal incomplete for {supporter_id}: "
                    f"failed={result.channels.failed_channel_ids}"
                )
        except Exception as e:
            await db.rollback()
            log.warning(f"[UNSUBSCRIBE] Error removing {supporter_id} from channels of {creator_id}: {e}")
            result.errors.append(f"channels: {e}")

    # Step 4
    if disable_email_notifications:
        try:
            result.email_notifications = await _disable_email_notifications(db, supporter_id, creator_id)
        except Exception as e:
            await db.rollback()
            log.error(f"[UNSUBSCRIBE] Failed to disable email notifications for {supporter_id}: {e}")
            result.errors.append(f"email_notifications: {e}")

    # Step 5
    try:
        result.supporters_count = await update_supporter_count(db, creator_id)
    except Exception as e:
        log.error(f"[UNSUBSCRIBE] Failed to update supporter count for creator {creator_id}: {e}")
        result.errors.append(f"supporters_count: {e}")

    result.success = True
    log.info(
        f"[UNSUBSCRIBE] Done supporter={supporter_id} creator={creator_id} reason={reason} "
        f"was_active={result.was_active} "
        f"subscription_cancelled={result.subscription.cancelled if result.subscription else None} "
        f"channels_removed={result.channels.removed_from if result.channels else None} "
        f"errors={len(result.errors)}"
    )
    return result


async def unsubscribe_supporter(
    db: AsyncSession,
    supporter_id: str,
    creator_id: str,
    **kwargs,
) -> UnsubscribeResult:
    """process_unsubscribe serialized per (supporter, creator) across workers."""
    lock_name = f"unsubscribe:{supporter_id}:{creator_id}"
    try:
        async with advisory_lock(lock_name, timeout=settings.UNSUBSCRIBE_LOCK_TIMEOUT_SECONDS) as acquired:
            if not acquired:
                log.warning(f"[UNSUBSCRIBE] Revocation already in progress for {lock_name}")
                return UnsubscribeResult(success=False, error="Revocation already in progress")
            return await process_unsubscribe(db, supporter_id, creator_id, **kwargs)
    except RedisError as e:
        log.warning(f"[UNSUBSCRIBE] Lock backend unavailable ({e}), proceeding without lock")
        return await process_unsubscribe(db, supporter_id, creator_id, **kwargs)

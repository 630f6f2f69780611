"""
Channel sync engine.

Single place that mirrors local community channels onto the hosted chat
service. The relational tables are the source of truth; the chat service is
treated as a best-effort cache of who may read which channel:

- channels are provisioned lazily, on first need, under an id derived from
  (creator id, channel id) so concurrent provisioning converges on one remote
  channel
- add/remove are set operations on the remote side, so repeating them is safe
- bulk sync processes each channel independently and reports per-channel errors
"""
import asyncio
import logging
from typing import Any, Awaitable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.core.config import settings
from circle_access.db.models import Channel, ChannelMember, User
from circle_access.schemas.stream import (
    ChannelError,
    JoinedChannel,
    MemberOperationResult,
    ProvisionChannelResult,
    ResyncResult,
    SyncSupporterResult,
)
from circle_access.services.stream_chat import (
    StreamChatError,
    StreamChatService,
    generate_stream_channel_id,
    stream_client,
)
from circle_access.services.supporters import list_active_memberships

log = logging.getLogger("channel_sync")


class ChannelSyncError(Exception):
    pass


class ChannelNotFoundError(ChannelSyncError):
    pass


class ChannelNotSyncedError(ChannelSyncError):
    """Member operations need the channel provisioned first; not retried."""


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "chat service call timed out"
    return str(exc) or exc.__class__.__name__


async def bounded(call: Awaitable[Any]) -> Any:
    """Cap a single remote call so a hung chat service cannot stall the caller."""
    return await asyncio.wait_for(call, timeout=settings.STREAM_CHANNEL_OP_TIMEOUT_SECONDS)


async def _load_synced_channel(db: AsyncSession, channel_id: str) -> Channel:
    channel = await db.get(Channel, channel_id)
    if channel is None:
        raise ChannelNotFoundError(f"Channel {channel_id} not found")
    if not channel.stream_channel_id:
        raise ChannelNotSyncedError(f"Channel {channel_id} not synced to chat service")
    return channel


async def _ensure_local_member(db: AsyncSession, channel_id: str, user_id: str) -> bool:
    """True when this call created the roster row."""
    existing = await db.execute(
        select(ChannelMember.id).where(
            ChannelMember.channel_id == channel_id,
            ChannelMember.user_id == user_id,
        )
    )
    if existing.scalar_one_or_none():
        return False

    db.add(ChannelMember(channel_id=channel_id, user_id=user_id))
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent add already wrote the row.
        await db.rollback()
        return False
    return True


async def provision_channel(
    db: AsyncSession,
    channel_id: str,
    *,
    sync_members: bool = True,
    force: bool = False,
    chat: StreamChatService | None = None,
) -> ProvisionChannelResult:
    chat = chat or stream_client

    try:
        channel = await db.get(Channel, channel_id)
        if channel is None:
            log.error(f"[CHANNEL-SYNC] Channel not found: {channel_id}")
            return ProvisionChannelResult(success=False, error="Channel not found")

        if channel.stream_channel_id and not force:
            log.debug(f"[CHANNEL-SYNC] Channel {channel_id} already synced as {channel.stream_channel_id}")
            return ProvisionChannelResult(
                success=True,
                stream_channel_id=channel.stream_channel_id,
                already_synced=True,
            )

        creator = await db.get(User, channel.creator_id)
        if creator is None:
            log.error(f"[CHANNEL-SYNC] Creator {channel.creator_id} not found for channel {channel_id}")
            return ProvisionChannelResult(success=False, error="Creator not found")

        await bounded(chat.upsert_user(creator.id, creator.display_name, creator.photo_url))

        # An existing remote id is immutable, even on a forced re-sync.
        stream_channel_id = channel.stream_channel_id or generate_stream_channel_id(
            channel.creator_id, channel.id
        )

        member_ids: list[str] = []
        skipped: list[str] = []
        if sync_members:
            rows = await db.execute(
                select(ChannelMember.user_id).where(ChannelMember.channel_id == channel.id)
            )
            for member_id in rows.scalars().all():
                member = await db.get(User, member_id)
                if member is None:
                    skipped.append(member_id)
                    continue
                try:
                    await bounded(chat.upsert_user(member.id, member.display_name, member.photo_url))
                except (StreamChatError, asyncio.TimeoutError) as e:
                    log.warning(
                        f"[CHANNEL-SYNC] Skipping member {member_id} of channel {channel_id}: "
                        f"{describe_error(e)}"
                    )
                    skipped.append(member_id)
                    continue
                member_ids.append(member_id)

        await bounded(
            chat.get_or_create_channel(
                stream_channel_id,
                data={
                    "name": channel.name,
                    "created_by_id": channel.creator_id,
                    "category": channel.category or "custom",
                    "min_tier_required": channel.min_tier_required or 1,
                    "local_channel_id": channel.id,
                    "creator_name": creator.display_name,
                },
            )
        )
        if member_ids:
            await bounded(chat.add_members(stream_channel_id, member_ids))

        if channel.stream_channel_id != stream_channel_id:
            channel.stream_channel_id = stream_channel_id
            try:
                await db.commit()
            except Exception as e:
                # The id is derived, so the next provisioning attempt lands on the same remote channel.
                await db.rollback()
                log.warning(
                    f"[CHANNEL-SYNC] Failed to persist stream id {stream_channel_id} "
                    f"for channel {channel_id}: {e}"
                )

        log.info(
            f"[CHANNEL-SYNC] Provisioned channel {channel_id} as {stream_channel_id} "
            f"members={len(member_ids)} skipped={len(skipped)}"
        )
        return ProvisionChannelResult(
            success=True,
            stream_channel_id=stream_channel_id,
            member_count=len(member_ids),
            skipped_members=skipped,
        )
    except Exception as e:
        log.error(f"[CHANNEL-SYNC] Failed to provision channel {channel_id}: {describe_error(e)}", exc_info=True)
        return ProvisionChannelResult(success=False, error=describe_error(e))


async def sync_channel(
    db: AsyncSession,
    channel_id: str,
    *,
    force: bool = False,
    chat: StreamChatService | None = None,
) -> ProvisionChannelResult:
    return await provision_channel(db, channel_id, sync_members=True, force=force, chat=chat)


async def add_member(
    db: AsyncSession,
    channel_id: str,
    user_id: str,
    *,
    announce: bool = False,
    chat: StreamChatService | None = None,
) -> MemberOperationResult:
    """Add the user to a provisioned channel. The join message is posted on first join only."""
    chat = chat or stream_client

    try:
        channel = await _load_synced_channel(db, channel_id)
    except ChannelSyncError as e:
        log.error(f"[CHANNEL-SYNC] Cannot add {user_id}: {e}")
        return MemberOperationResult(success=False, channel_id=channel_id, user_id=user_id, error=str(e))

    stream_channel_id = channel.stream_channel_id
    try:
        user = await db.get(User, user_id)
        if user is None:
            return MemberOperationResult(
                success=False,
                channel_id=channel_id,
                user_id=user_id,
                stream_channel_id=stream_channel_id,
                error="User not found",
            )
        display_name = user.display_name

        await bounded(chat.upsert_user(user.id, display_name, user.photo_url))
        await bounded(chat.add_members(stream_channel_id, [user_id]))
        joined = await _ensure_local_member(db, channel_id, user_id)

        if announce and joined:
            text = f"{display_name or 'A new member'} has joined the channel"
            await bounded(
                chat.send_message(stream_channel_id, text, user_id=user_id, message_type="system")
            )

        log.info(f"[CHANNEL-SYNC] Added {user_id} to {stream_channel_id}")
        return MemberOperationResult(
            success=True,
            channel_id=channel_id,
            user_id=user_id,
            stream_channel_id=stream_channel_id,
        )
    except Exception as e:
        log.error(f"[CHANNEL-SYNC] Failed to add {user_id} to channel {channel_id}: {describe_error(e)}")
        return MemberOperationResult(
            success=False,
            channel_id=channel_id,
            user_id=user_id,
            stream_channel_id=stream_channel_id,
            error=describe_error(e),
        )


async def remove_member(
    db: AsyncSession,
    channel_id: str,
    user_id: str,
    *,
    chat: StreamChatService | None = None,
) -> MemberOperationResult:
    """Remove the user from the remote channel. Message history is left alone."""
    chat = chat or stream_client

    try:
        channel = await _load_synced_channel(db, channel_id)
    except ChannelSyncError as e:
        log.error(f"[CHANNEL-SYNC] Cannot remove {user_id}: {e}")
        return MemberOperationResult(success=False, channel_id=channel_id, user_id=user_id, error=str(e))

    try:
        await bounded(chat.remove_members(channel.stream_channel_id, [user_id]))
    except Exception as e:
        log.warning(
            f"[CHANNEL-SYNC] Failed to remove {user_id} from {channel.stream_channel_id}: {describe_error(e)}"
        )
        return MemberOperationResult(
            success=False,
            channel_id=channel_id,
            user_id=user_id,
            stream_channel_id=channel.stream_channel_id,
            error=describe_error(e),
        )

    log.info(f"[CHANNEL-SYNC] Removed {user_id} from {channel.stream_channel_id}")
    return MemberOperationResult(
        success=True,
        channel_id=channel_id,
        user_id=user_id,
        stream_channel_id=channel.stream_channel_id,
    )


async def sync_subscriber_across_creator_channels(
    db: AsyncSession,
    subscriber_id: str,
    creator_id: str,
    tier_level: int,
    *,
    announce: bool = False,
    chat: StreamChatService | None = None,
) -> SyncSupporterResult:
    """
    Add a subscriber to every channel of the creator their tier unlocks,
    provisioning channels that have never been synced.
    """
    chat = chat or stream_client

    subscriber = await db.get(User, subscriber_id)
    if subscriber is None:
        log.error(f"[CHANNEL-SYNC] Supporter not found: {subscriber_id}")
        return SyncSupporterResult(success=False, error="Supporter not found")

    try:
        await bounded(chat.upsert_user(subscriber.id, subscriber.display_name, subscriber.photo_url))
        rows = await db.execute(
            select(Channel.id, Channel.name, Channel.stream_channel_id)
            .where(
                Channel.creator_id == creator_id,
                Channel.min_tier_required <= max(tier_level or 1, 1),
            )
            .order_by(Channel.min_tier_required, Channel.created_at)
        )
        channels = rows.all()
    except Exception as e:
        log.error(
            f"[CHANNEL-SYNC] Cannot start sync for {subscriber_id} on creator {creator_id}: {describe_error(e)}"
        )
        return SyncSupporterResult(success=False, error=describe_error(e))

    joined: list[JoinedChannel] = []
    errors: list[ChannelError] = []
    display_name = subscriber.display_name

    for channel in channels:
        stream_channel_id = channel.stream_channel_id
        try:
            if not stream_channel_id:
                log.info(f"[CHANNEL-SYNC] Channel {channel.id} not synced yet, provisioning")
                provisioned = await provision_channel(db, channel.id, sync_members=True, chat=chat)
                if not provisioned.success or not provisioned.stream_channel_id:
                    errors.append(ChannelError(channel_id=channel.id, error=provisioned.error or "provisioning failed"))
                    continue
                stream_channel_id = provisioned.stream_channel_id

            await bounded(chat.add_members(stream_channel_id, [subscriber_id]))
            newly_joined = await _ensure_local_member(db, channel.id, subscriber_id)

            if announce and newly_joined:
                await bounded(
                    chat.send_message(
                        stream_channel_id,
                        f"{display_name or 'A new supporter'} has joined the circle!",
                        user_id=subscriber_id,
                        message_type="system",
                    )
                )
                try:
                    await bounded(
                        chat.send_message(
                            stream_channel_id,
                            f"Welcome to the circle, {display_name or 'friend'}! Thank you for joining. "
                            "Feel free to say hello and connect with everyone here.",
                            user_id=creator_id,
                            custom={"is_welcome_message": True},
                        )
                    )
                except Exception as e:
                    log.warning(f"[CHANNEL-SYNC] Welcome message failed in {stream_channel_id}: {describe_error(e)}")

            joined.append(
                JoinedChannel(
                    id=channel.id,
                    name=channel.name,
                    stream_channel_id=stream_channel_id,
                    newly_joined=newly_joined,
                )
            )
            log.info(f"[CHANNEL-SYNC] Supporter {subscriber_id} added to {stream_channel_id}")
        except Exception as e:
            log.error(
                f"[CHANNEL-SYNC] Failed to add supporter {subscriber_id} to channel {channel.id}: {describe_error(e)}"
            )
            errors.append(ChannelError(channel_id=channel.id, error=describe_error(e)))

    return SyncSupporterResult(success=True, added_to_channels=joined, errors=errors)


async def resync_subscriber_channels(
    db: AsyncSession,
    subscriber_id: str,
    *,
    chat: StreamChatService | None = None,
) -> ResyncResult:
    """Re-derive the subscriber's remote memberships from their active grants."""
    try:
        memberships = await list_active_memberships(db, subscriber_id)
    except Exception as e:
        log.error(f"[CHANNEL-SYNC] Failed to load memberships for {subscriber_id}: {e}")
        return ResyncResult(success=False, error=describe_error(e))

    creators: dict[str, SyncSupporterResult] = {}
    for membership in memberships:
        creators[membership.creator_id] = await sync_subscriber_across_creator_channels(
            db,
            subscriber_id,
            membership.creator_id,
            membership.tier_level,
            chat=chat,
        )

    return ResyncResult(success=all(r.success for r in creators.values()), creators=creators)

from contextlib import asynccontextmanager

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from circle_access.db.models import (
    ChannelMember,
    CreatorProfile,
    Subscription,
    Supporter,
    SupporterTransaction,
)
from circle_access.services.unsubscribe import (
    REASON_EXPIRED,
    REASON_USER_REQUESTED,
    process_unsubscribe,
    unsubscribe_supporter,
)


async def _grant(db, supporter_id, creator_id):
    return await db.scalar(
        select(Supporter).where(Supporter.supporter_id == supporter_id, Supporter.creator_id == creator_id)
    )


async def test_full_revocation(db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    other = await factory.user("Sita")
    sub = await factory.subscription(fan, creator, gateway="khalti")
    await factory.supporter(fan, creator, subscription=sub)
    await factory.supporter(other, creator)
    general = await factory.channel(creator, "General", stream_channel_id="ch_general")
    draft = await factory.channel(creator, "Draft")
    await factory.member(general, fan)
    await factory.member(draft, fan)
    chat.members["ch_general"] = {fan.id, other.id}
    await factory.transaction(fan, creator)
    await factory.transaction(fan, creator, status="pending")

    result = await process_unsubscribe(db, fan.id, creator.id, reason=REASON_USER_REQUESTED, chat=chat)

    assert result.success is True
    assert result.was_active is True
    assert result.errors == []

    grant = await _grant(db, fan.id, creator.id)
    assert grant is not None
    assert grant.is_active is False

    assert result.subscription.cancelled is True
    assert result.subscription.status == "cancelled"
    stored = await db.get(Subscription, sub.id)
    assert stored.status == "cancelled"
    assert stored.cancel_reason == REASON_USER_REQUESTED
    assert stored.cancelled_at is not None

    assert result.channels.removed_from == 1
    assert result.channels.channel_ids == [general.id]
    assert chat.members["ch_general"] == {other.id}
    remaining = await db.scalars(select(ChannelMember).where(ChannelMember.user_id == fan.id))
    assert remaining.all() == []

    assert result.email_notifications.affected_transactions == 1
    flags = await db.scalars(
        select(SupporterTransaction.email_notifications_enabled).where(SupporterTransaction.supporter_id == fan.id)
    )
    assert sorted(flags.all()) == [False, True]

    assert result.supporters_count == 1
    profile = await db.get(CreatorProfile, creator.id)
    assert profile.supporters_count == 1


async def test_revocation_is_idempotent(db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    sub = await factory.subscription(fan, creator)
    await factory.supporter(fan, creator, subscription=sub)
    await factory.channel(creator, "General", stream_channel_id="ch_general")

    first = await process_unsubscribe(db, fan.id, creator.id, chat=chat)
    second = await process_unsubscribe(db, fan.id, creator.id, chat=chat)

    assert first.success and second.success
    assert first.was_active is True
    assert second.was_active is False
    assert second.subscription.cancelled is False
    assert second.subscription.status == "cancelled"
    assert second.supporters_count == 0

    grant = await _grant(db, fan.id, creator.id)
    assert grant.is_active is False


async def test_expired_reason_marks_billing_record_expired(db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    sub = await factory.subscription(fan, creator)
    # Grant without a linked billing record; the caller names it.
    await factory.supporter(fan, creator)

    result = await process_unsubscribe(
        db, fan.id, creator.id, subscription_id=sub.id, reason=REASON_EXPIRED, chat=chat
    )

    assert result.success is True
    stored = await db.get(Subscription, sub.id)
    assert stored.status == "expired"
    assert stored.cancel_reason == REASON_EXPIRED


async def test_channel_failure_does_not_block_revocation(db, factory, chat, chat_error):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    await factory.supporter(fan, creator)
    broken = await factory.channel(creator, "Broken", stream_channel_id="ch_broken")
    healthy = await factory.channel(creator, "Healthy", stream_channel_id="ch_healthy")
    await factory.member(broken, fan)
    await factory.member(healthy, fan)
    chat.members["ch_broken"] = {fan.id}
    chat.members["ch_healthy"] = {fan.id}
    chat.fail_on["ch_broken"] = chat_error

    result = await process_unsubscribe(db, fan.id, creator.id, chat=chat)

    assert result.success is True
    assert result.channels.channel_ids == [healthy.id]
    assert result.channels.failed_channel_ids == [broken.id]
    assert chat.members["ch_healthy"] == set()

    grant = await _grant(db, fan.id, creator.id)
    assert grant.is_active is False

    # Roster row kept where the remote removal failed.
    rows = await db.scalars(select(ChannelMember.channel_id).where(ChannelMember.user_id == fan.id))
    assert rows.all() == [broken.id]


async def test_missing_grant_still_runs_cleanup(db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    await factory.channel(creator, "General", stream_channel_id="ch_general")
    chat.members["ch_general"] = {fan.id}

    result = await process_unsubscribe(db, fan.id, creator.id, chat=chat)

    assert result.success is True
    assert result.was_active is False
    assert result.supporter is None
    assert chat.members["ch_general"] == set()


async def test_options_skip_steps(db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    sub = await factory.subscription(fan, creator)
    await factory.supporter(fan, creator, subscription=sub)
    await factory.channel(creator, "General", stream_channel_id="ch_general")
    await factory.transaction(fan, creator)

    result = await process_unsubscribe(
        db,
        fan.id,
        creator.id,
        cancel_subscription=False,
        remove_from_channels=False,
        disable_email_notifications=False,
        chat=chat,
    )

    assert result.success is True
    assert result.subscription is None
    assert result.channels is None
    assert result.email_notifications is None
    assert chat.calls == []
    stored = await db.get(Subscription, sub.id)
    assert stored.status == "active"


async def test_concurrent_revocation_is_rejected(db, factory, chat, monkeypatch):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    await factory.supporter(fan, creator)

    @asynccontextmanager
    async def held_elsewhere(name, timeout=30, retry_count=3, retry_delay=0.5):
        yield False

    monkeypatch.setattr("circle_access.services.unsubscribe.advisory_lock", held_elsewhere)

    result = await unsubscribe_supporter(db, fan.id, creator.id, chat=chat)

    assert result.success is False
    assert result.error == "Revocation already in progress"
    grant = await _grant(db, fan.id, creator.id)
    assert grant.is_active is True


async def test_revocation_proceeds_when_lock_backend_is_down(db, factory, chat, monkeypatch):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    await factory.supporter(fan, creator)
    seen = []

    @asynccontextmanager
    async def unreachable(name, timeout=30, retry_count=3, retry_delay=0.5):
        seen.append(name)
        raise RedisConnectionError("connection refused")
        yield  # pragma: no cover

    monkeypatch.setattr("circle_access.services.unsubscribe.advisory_lock", unreachable)

    result = await unsubscribe_supporter(db, fan.id, creator.id, chat=chat)

    assert seen == [f"unsubscribe:{fan.id}:{creator.id}"]
    assert result.success is True
    assert result.was_active is True


async def test_failed_grant_deactivation_stops_revocation(db, factory, chat, monkeypatch):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    sub = await factory.subscription(fan, creator, gateway="khalti")
    await factory.supporter(fan, creator, subscription=sub)
    channel = await factory.channel(creator, "General", stream_channel_id="ch_general")
    await factory.member(channel, fan)
    chat.members["ch_general"] = {fan.id}
    # The rollback expires these instances.
    fan_id, creator_id, sub_id = fan.id, creator.id, sub.id

    real_commit = db.commit
    commits = []

    async def refusing_commit():
        commits.append(1)
        if len(commits) == 1:
            raise RuntimeError("write refused")
        await real_commit()

    monkeypatch.setattr(db, "commit", refusing_commit)

    result = await process_unsubscribe(db, fan_id, creator_id, reason=REASON_USER_REQUESTED, chat=chat)

    assert result.success is False
    assert "Failed to deactivate" in result.error
    assert "write refused" in result.error
    assert result.subscription is None
    assert result.channels is None
    assert chat.calls == []
    assert chat.members["ch_general"] == {fan_id}

    status = await db.scalar(select(Subscription.status).where(Subscription.id == sub_id))
    assert status == "active"
    is_active = await db.scalar(
        select(Supporter.is_active).where(Supporter.supporter_id == fan_id, Supporter.creator_id == creator_id)
    )
    assert is_active is True

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from circle_access.core.config import settings
from circle_access.db.models import ChannelMember, Subscription, Supporter, SupporterTransaction
from circle_access.db.session import get_db
from circle_access.main import app
from circle_access.utils.auth import (
    create_token,
    create_unsubscribe_token,
    decode_unsubscribe_token,
    unsubscribe_url,
)


@pytest.fixture
async def client(db, monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://circle.example/")

    async def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def pair(factory):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi", email="ravi@example.com")
    sub = await factory.subscription(fan, creator)
    await factory.supporter(fan, creator, subscription=sub)
    channel = await factory.channel(creator, "General", stream_channel_id="ch_general")
    await factory.member(channel, fan)
    await factory.transaction(fan, creator)
    return fan, creator, sub


async def _state(db, fan, creator, sub):
    status = await db.scalar(select(Subscription.status).where(Subscription.id == sub.id))
    is_active = await db.scalar(
        select(Supporter.is_active).where(Supporter.supporter_id == fan.id, Supporter.creator_id == creator.id)
    )
    emails = await db.scalar(
        select(SupporterTransaction.email_notifications_enabled).where(SupporterTransaction.supporter_id == fan.id)
    )
    roster = await db.scalars(select(ChannelMember.user_id).where(ChannelMember.user_id == fan.id))
    return status, is_active, emails, roster.all()


def test_token_carries_the_pair():
    token = create_unsubscribe_token("fan-1", "creator-1", "ravi@example.com")

    claims = decode_unsubscribe_token(token)

    assert claims["sub"] == "fan-1"
    assert claims["creator_id"] == "creator-1"
    assert claims["email"] == "ravi@example.com"


def test_tokens_from_other_flows_are_rejected():
    # Right secret, no unsubscribe scope.
    other = create_token({"sub": "fan-1", "creator_id": "creator-1"}, settings.UNSUBSCRIBE_SECRET, timedelta(days=1))
    expired = create_token(
        {"sub": "fan-1", "creator_id": "creator-1", "scope": "email_unsubscribe"},
        settings.UNSUBSCRIBE_SECRET,
        timedelta(days=-1),
    )
    forged = create_token(
        {"sub": "fan-1", "creator_id": "creator-1", "scope": "email_unsubscribe"},
        "not-the-secret",
        timedelta(days=1),
    )

    assert decode_unsubscribe_token(other) is None
    assert decode_unsubscribe_token(expired) is None
    assert decode_unsubscribe_token(forged) is None
    assert decode_unsubscribe_token("garbage") is None


async def test_email_only_keeps_billing_and_chat(client, db, pair, chat):
    fan, creator, sub = pair
    token = create_unsubscribe_token(fan.id, creator.id)

    response = await client.post("/supporter/unsubscribe", json={"token": token, "unsubscribe_type": "email-only"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Successfully unsubscribed from email notifications"
    assert body["details"]["subscription"] is None
    assert body["details"]["channels"] is None
    assert body["details"]["email_notifications"]["affected_transactions"] == 1

    status, is_active, emails, roster = await _state(db, fan, creator, sub)
    assert status == "active"
    assert is_active is False
    assert emails is False
    assert roster == [fan.id]


async def test_full_unsubscribe_cancels(client, db, factory, chat):
    creator = await factory.user("Maya")
    fan = await factory.user("Ravi")
    sub = await factory.subscription(fan, creator)
    await factory.supporter(fan, creator, subscription=sub)
    token = create_unsubscribe_token(fan.id, creator.id)

    response = await client.post("/supporter/unsubscribe", json={"token": token, "unsubscribe_type": "full"})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Successfully unsubscribed from creator support"
    assert body["details"]["subscription"]["cancelled"] is True
    row = (
        await db.execute(select(Subscription.status, Subscription.cancel_reason).where(Subscription.id == sub.id))
    ).one()
    assert row.status == "cancelled"
    assert row.cancel_reason == "user_requested"


async def test_tampered_token_is_rejected(client, db, pair):
    fan, creator, sub = pair
    token = create_unsubscribe_token(fan.id, creator.id)
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

    response = await client.post("/supporter/unsubscribe", json={"token": tampered})

    assert response.status_code == 400
    _, is_active, emails, _ = await _state(db, fan, creator, sub)
    assert is_active is True
    assert emails is True


async def test_unknown_unsubscribe_type_is_rejected(client, pair):
    fan, creator, _ = pair
    token = create_unsubscribe_token(fan.id, creator.id)

    response = await client.post("/supporter/unsubscribe", json={"token": token, "unsubscribe_type": "everything"})

    assert response.status_code == 422


async def test_link_redirects_to_confirmation_page(client):
    token = create_unsubscribe_token("fan-1", "creator-1")

    missing = await client.get("/supporter/unsubscribe")
    invalid = await client.get("/supporter/unsubscribe", params={"token": "garbage"})
    valid = await client.get("/supporter/unsubscribe", params={"token": token})

    assert missing.status_code == 307
    assert missing.headers["location"] == "https://circle.example/home"
    assert invalid.headers["location"] == "https://circle.example/home?error=invalid_token"
    assert valid.headers["location"] == f"https://circle.example/unsubscribe?token={token}"


def test_unsubscribe_url_points_at_link_route(monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://circle.example")

    url = unsubscribe_url("fan-1", "creator-1")

    prefix = "https://circle.example/supporter/unsubscribe?token="
    assert url.startswith(prefix)
    assert decode_unsubscribe_token(url[len(prefix):])["sub"] == "fan-1"

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from circle_access.core.config import settings

UNSUBSCRIBE_SCOPE = "email_unsubscribe"


def create_token(data: dict, secret: str, expires_delta: timedelta):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_unsubscribe_token(supporter_id: str, creator_id: str, email: str | None = None) -> str:
    """Token embedded in email unsubscribe links, scoped to one (supporter, creator) pair."""
    return create_token(
        {
            "sub": supporter_id,
            "creator_id": creator_id,
            "email": email,
            "scope": UNSUBSCRIBE_SCOPE,
        },
        settings.UNSUBSCRIBE_SECRET,
        timedelta(days=settings.UNSUBSCRIBE_TOKEN_EXPIRE_DAYS),
    )


def decode_unsubscribe_token(token: str) -> dict | None:
    """Returns the claims, or None for a bad signature, expired token or wrong scope."""
    try:
        payload = jwt.decode(token, settings.UNSUBSCRIBE_SECRET, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != UNSUBSCRIBE_SCOPE:
        return None
    if not payload.get("sub") or not payload.get("creator_id"):
        return None
    return payload


def unsubscribe_url(supporter_id: str, creator_id: str, email: str | None = None) -> str:
    token = create_unsubscribe_token(supporter_id, creator_id, email)
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/supporter/unsubscribe?token={token}"

import hmac

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from circle_access.db.models import User
from circle_access.db.session import get_db
from circle_access.core.config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

async def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_value = token or request.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME)
    if not token_value:
        raise credentials_exception

    try:
        payload = jwt.decode(token_value, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await db.get(User, str(user_id))
    if user is None:
        raise credentials_exception

    return user


def has_cron_secret(request: Request) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        return False
    auth_header = request.headers.get("authorization") or ""
    return hmac.compare_digest(auth_header, f"Bearer {secret}")


async def require_cron_secret(request: Request) -> None:
    """Scheduled triggers must present the cron secret once one is configured."""
    if settings.CRON_SECRET and not has_cron_secret(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def require_manual_trigger(request: Request) -> None:
    if settings.ENVIRONMENT == "development":
        return
    if not has_cron_secret(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manual trigger only available in development or with proper authorization",
        )

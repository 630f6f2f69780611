import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.core.config import settings
from circle_access.db.session import get_db
from circle_access.schemas.subscription import EmailUnsubscribeRequest, EmailUnsubscribeResponse
from circle_access.services.unsubscribe import (
    REASON_EMAIL_UNSUBSCRIBE,
    REASON_USER_REQUESTED,
    unsubscribe_supporter,
)
from circle_access.utils.auth import decode_unsubscribe_token

log = logging.getLogger("supporter_api")

router = APIRouter(prefix="/supporter", tags=["supporter"])


@router.post("/unsubscribe", response_model=EmailUnsubscribeResponse)
async def unsubscribe_from_link(
    req: EmailUnsubscribeRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Unsubscribe from a signed email link; no session needed.

    "email-only" deactivates the grant and stops notification emails but leaves
    the billing record and chat membership alone. "full" is the same revocation
    as the settings page.
    """
    claims = decode_unsubscribe_token(req.token)
    if claims is None:
        raise HTTPException(status_code=400, detail="Invalid or expired token")

    supporter_id = claims["sub"]
    creator_id = claims["creator_id"]
    email_only = req.unsubscribe_type == "email-only"

    try:
        result = await unsubscribe_supporter(
            db,
            supporter_id,
            creator_id,
            cancel_subscription=not email_only,
            remove_from_channels=not email_only,
            disable_email_notifications=True,
            reason=REASON_EMAIL_UNSUBSCRIBE if email_only else REASON_USER_REQUESTED,
        )
    except Exception as e:
        log.exception("Link unsubscribe failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to unsubscribe")

    if not result.success:
        log.error(
            f"[UNSUBSCRIBE-API] Link unsubscribe failed supporter={supporter_id} "
            f"creator={creator_id}: {result.error}"
        )
        raise HTTPException(status_code=500, detail=result.error or "Failed to unsubscribe")

    message = (
        "Successfully unsubscribed from email notifications"
        if email_only
        else "Successfully unsubscribed from creator support"
    )
    return EmailUnsubscribeResponse(success=True, message=message, details=result)


@router.get("/unsubscribe")
async def open_unsubscribe_link(token: str | None = None):
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    if not token:
        return RedirectResponse(f"{base}/home")
    if decode_unsubscribe_token(token) is None:
        return RedirectResponse(f"{base}/home?error=invalid_token")
    return RedirectResponse(f"{base}/unsubscribe?token={token}")

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.db.session import get_db
from circle_access.db.models import Subscription, User
from circle_access.schemas.subscription import (
    ExpiryCheckResponse,
    UnsubscribeRequest,
    UnsubscribeResult,
)
from circle_access.services.subscription_expiry import check_subscription_expiry
from circle_access.services.unsubscribe import REASON_USER_REQUESTED, unsubscribe_supporter
from circle_access.utils.deps import get_current_user, require_cron_secret, require_manual_trigger

log = logging.getLogger("subscriptions_api")

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


async def _run_check(db: AsyncSession) -> ExpiryCheckResponse:
    started = time.monotonic()
    try:
        result = await check_subscription_expiry(db)
    except Exception as e:
        log.exception("Fatal error in expiry check: %s", e)
        raise HTTPException(status_code=500, detail="Failed to run expiry check")

    duration_ms = int((time.monotonic() - started) * 1000)
    log.info(
        f"[EXPIRY-API] Check completed in {duration_ms}ms: checked={result.checked} "
        f"reminders={result.reminders_sent} expired={result.expired} errors={len(result.errors)}"
    )
    return ExpiryCheckResponse(success=True, duration_ms=duration_ms, result=result)


@router.post("/check-expiry", response_model=ExpiryCheckResponse, dependencies=[Depends(require_cron_secret)])
async def check_expiry(db: AsyncSession = Depends(get_db)):
    return await _run_check(db)


@router.get("/check-expiry", response_model=ExpiryCheckResponse, dependencies=[Depends(require_manual_trigger)])
async def check_expiry_manually(db: AsyncSession = Depends(get_db)):
    log.info("[EXPIRY-API] Manual expiry check triggered")
    return await _run_check(db)


@router.post("/unsubscribe", response_model=UnsubscribeResult)
async def unsubscribe(
    req: UnsubscribeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    creator_id = req.creator_id
    subscription_id = None

    if req.subscription_id:
        sub = await db.get(Subscription, req.subscription_id)
        if sub is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        if sub.supporter_id != current_user.id:
            log.warning(
                f"[UNSUBSCRIBE-API] user={current_user.id} tried to cancel subscription "
                f"{sub.id} owned by {sub.supporter_id}"
            )
            raise HTTPException(status_code=403, detail="Access denied")
        if creator_id and creator_id != sub.creator_id:
            raise HTTPException(status_code=400, detail="Subscription does not belong to this creator")
        creator_id = sub.creator_id
        subscription_id = sub.id

    if not creator_id:
        raise HTTPException(status_code=400, detail="creator_id or subscription_id is required")
    if creator_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot unsubscribe from yourself")

    if req.feedback:
        log.info(f"[UNSUBSCRIBE-API] feedback from {current_user.id} for creator {creator_id}: {req.feedback!r}")

    try:
        result = await unsubscribe_supporter(
            db,
            current_user.id,
            creator_id,
            subscription_id=subscription_id,
            reason=REASON_USER_REQUESTED,
        )
    except Exception as e:
        log.exception("Unsubscribe failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to unsubscribe")

    if not result.success:
        raise HTTPException(status_code=500, detail=result.error or "Failed to unsubscribe")
    return result

import asyncio
import logging
from datetime import datetime, timezone

from circle_access.core.config import settings
from circle_access.db.session import SessionLocal
from circle_access.services.subscription_expiry import check_subscription_expiry

log = logging.getLogger("scheduler")

_scheduler_task: asyncio.Task | None = None


async def _run_expiry_check_once():
    async with SessionLocal() as db:
        try:
            result = await check_subscription_expiry(db)
            log.info(
                f"[SCHEDULER] Expiry check complete: "
                f"checked={result.checked}, "
                f"reminders={result.reminders_sent}, "
                f"expired={result.expired}, "
                f"errors={len(result.errors)}"
            )
            if result.errors:
                log.warning(f"[SCHEDULER] Expiry check errors: {result.errors}")
            return result
        except Exception as e:
            log.exception(f"[SCHEDULER] Expiry check failed: {e}")
            return None


async def _scheduler_loop():
    interval_seconds = settings.SUBSCRIPTION_EXPIRY_INTERVAL_HOURS * 3600

    log.info(
        f"[SCHEDULER] Starting subscription expiry scheduler: "
        f"interval={settings.SUBSCRIPTION_EXPIRY_INTERVAL_HOURS}h, "
        f"gateways={settings.EXPIRY_POLL_GATEWAYS}"
    )

    await asyncio.sleep(settings.SUBSCRIPTION_EXPIRY_INITIAL_DELAY_SECONDS)

    while True:
        try:
            log.info(f"[SCHEDULER] Running expiry check at {datetime.now(timezone.utc).isoformat()}")
            await _run_expiry_check_once()
        except asyncio.CancelledError:
            log.info("[SCHEDULER] Scheduler cancelled, shutting down")
            break
        except Exception as e:
            log.exception(f"[SCHEDULER] Unexpected error: {e}")

        log.info(f"[SCHEDULER] Next run in {settings.SUBSCRIPTION_EXPIRY_INTERVAL_HOURS} hours")
        await asyncio.sleep(interval_seconds)


def start_scheduler():
    global _scheduler_task

    if not settings.SUBSCRIPTION_EXPIRY_ENABLED:
        log.info("[SCHEDULER] Subscription expiry scheduler is disabled (SUBSCRIPTION_EXPIRY_ENABLED=false)")
        return

    if _scheduler_task is not None:
        log.warning("[SCHEDULER] Scheduler already running")
        return

    _scheduler_task = asyncio.create_task(_scheduler_loop())
    log.info("[SCHEDULER] Subscription expiry scheduler started")


def stop_scheduler():
    global _scheduler_task

    if _scheduler_task is not None:
        _scheduler_task.cancel()
        _scheduler_task = None
        log.info("[SCHEDULER] Subscription expiry scheduler stopped")

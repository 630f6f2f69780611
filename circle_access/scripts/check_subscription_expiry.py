"""
Run one subscription expiry sweep by hand.

Usage:
    poetry run python -m circle_access.scripts.check_subscription_expiry
    poetry run python -m circle_access.scripts.check_subscription_expiry --now 2026-03-01T00:00:00+00:00
"""
import argparse
import asyncio
import json
from datetime import datetime, timezone

from circle_access.db.session import SessionLocal
from circle_access.services.subscription_expiry import check_subscription_expiry


def _parse_now(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def main(now: datetime | None) -> int:
    print("⏰ Running subscription expiry check...")

    async with SessionLocal() as db:
        result = await check_subscription_expiry(db, now=now)

    print(f"📋 Checked {result.checked} subscriptions")
    print(f"✉️  Reminders queued: {result.reminders_sent} "
          f"(2 days: {result.details.two_day_reminders}, 1 day: {result.details.one_day_reminders})")
    print(f"🔒 Expired: {result.expired}")

    if result.errors:
        print(f"❌ {len(result.errors)} errors:")
        print(json.dumps(result.errors, indent=2))
        return 1

    print("✅ Done")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the subscription expiry sweep once.")
    parser.add_argument("--now", help="ISO timestamp to evaluate expiry against (defaults to current time)")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(_parse_now(args.now))))

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.db.models import CreatorProfile, Supporter

log = logging.getLogger("supporters")


async def get_supporter(
    db: AsyncSession,
    supporter_id: str,
    creator_id: str,
) -> Supporter | None:
    result = await db.execute(
        select(Supporter).where(
            Supporter.supporter_id == supporter_id,
            Supporter.creator_id == creator_id,
        )
    )
    return result.scalar_one_or_none()


async def list_active_memberships(db: AsyncSession, supporter_id: str) -> list[Supporter]:
    result = await db.execute(
        select(Supporter).where(
            Supporter.supporter_id == supporter_id,
            Supporter.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


async def update_supporter_count(db: AsyncSession, creator_id: str) -> int:
    """
    Recompute the creator's supporter count from the active grants and store it.
    Never incremented in place, so retries and out-of-order calls cannot drift it.
    """
    result = await db.execute(
        select(func.count(func.distinct(Supporter.supporter_id))).where(
            Supporter.creator_id == creator_id,
            Supporter.is_active.is_(True),
        )
    )
    count = int(result.scalar_one() or 0)

    profile = await db.get(CreatorProfile, creator_id)
    if profile is None:
        profile = CreatorProfile(user_id=creator_id, supporters_count=count)
        db.add(profile)
    else:
        profile.supporters_count = count

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    log.info(f"[SUPPORTERS] creator={creator_id} supporters_count={count}")
    return count

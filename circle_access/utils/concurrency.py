import logging
import asyncio
import uuid
from typing import Optional
from contextlib import asynccontextmanager

import redis.asyncio as redis

from circle_access.core.config import settings

log = logging.getLogger(__name__)

_redis_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_pool


LOCK_PREFIX = "lock"


class AdvisoryLock:

    def __init__(
        self,
        name: str,
        timeout: int = 30,
        retry_count: int = 3,
        retry_delay: float = 0.5,
    ):
        self.name = f"{LOCK_PREFIX}:{name}"
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.token: Optional[str] = None
        self.redis: Optional[redis.Redis] = None

    async def acquire(self) -> bool:
        self.token = str(uuid.uuid4())
        self.redis = await get_redis()

        for attempt in range(self.retry_count):
            acquired = await self.redis.set(
                self.name,
                self.token,
                nx=True,
                ex=self.timeout,
            )
            if acquired:
                log.debug("Lock acquired: %s", self.name)
                return True

            if attempt < self.retry_count - 1:
                await asyncio.sleep(self.retry_delay * (attempt + 1))

        log.warning("Failed to acquire lock after %d attempts: %s", self.retry_count, self.name)
        return False

    async def release(self):
        if not self.redis or not self.token:
            return

        # Only the holder may delete; an expired lock may already belong to someone else.
        lua_script = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        try:
            await self.redis.eval(lua_script, 1, self.name, self.token)
            log.debug("Lock released: %s", self.name)
        except Exception as e:
            log.error("Failed to release lock %s: %s", self.name, e)


@asynccontextmanager
async def advisory_lock(
    name: str,
    timeout: int = 30,
    retry_count: int = 3,
    retry_delay: float = 0.5,
):
    """Yields True when the lock is held, False when another holder has it."""
    lock = AdvisoryLock(name, timeout, retry_count, retry_delay)

    try:
        acquired = await lock.acquire()
        yield acquired
    finally:
        await lock.release()

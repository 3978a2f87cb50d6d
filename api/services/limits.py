"""
Global daily cap on stylization calls
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import redis.asyncio as redis
import structlog

from api.config import settings

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyLimitService:
    """
    Counts stylization calls per UTC day in Redis.

    Every read fails open: if the counter store is unreachable the limit
    is treated as untouched, so an outage never blocks users.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        limit: Optional[int] = None,
        key_prefix: str = "global:api:daily_count",
        now: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.limit = settings.STYLIZE_DAILY_LIMIT if limit is None else limit
        self.key_prefix = key_prefix
        self._now = now

    async def initialize(self) -> None:
        if self.client is None:
            self.client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Daily limit service initialized", limit=self.limit)

    async def cleanup(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def today_key(self) -> str:
        return f"{self.key_prefix}:{self._now().date().isoformat()}"

    def seconds_until_reset(self) -> int:
        now = self._now()
        tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return max(1, int((tomorrow - now).total_seconds()))

    async def used(self) -> int:
        try:
            value = await self.client.get(self.today_key())
            return int(value or 0)
        except Exception as e:
            logger.warning("Daily limit read failed, failing open", error=str(e))
            return 0

    async def remaining(self) -> int:
        return max(0, self.limit - await self.used())

    async def can_make_call(self) -> bool:
        return await self.used() < self.limit

    async def increment(self) -> int:
        """Count one call. Returns the new total, or 0 when the store is down."""
        key = self.today_key()
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, self.seconds_until_reset())
            return int(count)
        except Exception as e:
            logger.warning("Daily limit increment failed", error=str(e))
            return 0

    async def status(self) -> Dict[str, int]:
        used = await self.used()
        return {"remaining": max(0, self.limit - used), "limit": self.limit, "used": used}

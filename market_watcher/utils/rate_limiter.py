import asyncio
import time
from types import TracebackType
from typing import Optional

from market_watcher.utils.config_loader import ApiRateLimit
from market_watcher.utils.logger import LOGGER as logger


class RateLimiter:
    """
    Token bucket guarding one upstream endpoint.

    The bucket starts full with ``limit`` tokens and refills continuously at
    ``limit / interval`` tokens per second. Callers either ``await acquire()``
    or use the limiter as an async context manager around the request.
    """

    def __init__(self, endpoint_name: str, rate_limit_config: ApiRateLimit) -> None:
        self.endpoint_name = endpoint_name
        self.capacity = float(rate_limit_config.limit)
        self.refill_per_second = self.capacity / rate_limit_config.interval

        self.tokens: float = self.capacity
        self.last_refill_time = time.monotonic()
        self.waits = 0
        self._lock = asyncio.Lock()

        logger.info(
            f"Rate limit for '{endpoint_name}': {rate_limit_config.limit} calls "
            f"per {rate_limit_config.interval:g}s"
        )

    def seconds_until_available(self) -> float:
        """Time until one whole token is in the bucket; 0 when one is already there."""
        self._refill()
        missing = 1.0 - self.tokens
        return max(0.0, missing / self.refill_per_second)

    async def acquire(self) -> None:
        async with self._lock:
            delay = self.seconds_until_available()
            while delay > 0:
                self.waits += 1
                logger.debug(f"'{self.endpoint_name}' throttled for {delay:.2f}s")
                await asyncio.sleep(delay)
                delay = self.seconds_until_available()
            self.tokens -= 1

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: Optional[type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        return None

    def _refill(self) -> None:
        now = time.monotonic()
        gained = (now - self.last_refill_time) * self.refill_per_second
        if gained > 0:
            self.tokens = min(self.capacity, self.tokens + gained)
            self.last_refill_time = now

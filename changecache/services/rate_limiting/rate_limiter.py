"""
Rate Limiter Service

In-process token bucket guarding every Cache Store access path.
One instance is constructed by the engine and handed to each consumer.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ...domain.documents.exceptions import OperationCancelledError

logger = structlog.get_logger(__name__)


class TokenBucketRateLimiter:
    """
    Token bucket with capacity and refill rate equal to requests-per-second.

    Tokens are added one per fixed tick of 1/rps seconds, counted from
    construction, whether or not anyone consumes them. The bucket never
    holds more than its capacity. The internal lock only covers token
    accounting; waiting happens outside it.
    """

    def __init__(
        self,
        requests_per_second: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if requests_per_second < 1:
            raise ValueError("requests_per_second must be at least 1")

        self.capacity = requests_per_second
        self.tick_seconds = 1.0 / requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(requests_per_second)
        self._last_tick = clock()
        self._lock = asyncio.Lock()
        self._stats = {"acquired": 0, "waited": 0, "timed_out": 0}

    def _refill(self, now: float) -> None:
        """Credit the tokens of every tick elapsed since the last credit."""
        ticks = int((now - self._last_tick) / self.tick_seconds)
        if ticks > 0:
            self._tokens = min(float(self.capacity), self._tokens + ticks)
            self._last_tick += ticks * self.tick_seconds

    async def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        async with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1:
                self._tokens -= 1
                self._stats["acquired"] += 1
                return True
            return False

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Block until a token is available.

        Args:
            timeout: Seconds the caller is willing to wait, or None

        Raises:
            OperationCancelledError: If the timeout expires while waiting
        """
        deadline = None if timeout is None else self._clock() + timeout
        waited = False

        while True:
            async with self._lock:
                now = self._clock()
                self._refill(now)
                if self._tokens >= 1:
                    self._tokens -= 1
                    self._stats["acquired"] += 1
                    if waited:
                        self._stats["waited"] += 1
                    return
                wait = max(self._last_tick + self.tick_seconds - now, 0.0)

            if deadline is not None:
                remaining = deadline - now
                if remaining <= 0:
                    self._stats["timed_out"] += 1
                    logger.debug("rate_limiter_wait_expired", timeout=timeout)
                    raise OperationCancelledError(
                        operation="rate_limiter.acquire", timeout_seconds=timeout
                    )
                wait = min(wait, remaining)

            waited = True
            await self._sleep(wait)

    @property
    def available_tokens(self) -> int:
        """Whole tokens available at this instant."""
        self._refill(self._clock())
        return int(self._tokens)

    def get_metrics(self) -> Dict[str, Any]:
        """Get rate limiter metrics."""
        return {
            "capacity": self.capacity,
            "tick_seconds": self.tick_seconds,
            "available_tokens": self.available_tokens,
            **self._stats,
        }

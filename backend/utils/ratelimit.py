"""Outbound rate limiting for the provider proxy.

A job scheduled through :class:`Limiter` waits for a free slot, then for
the spacing window since the previous job started, then runs. Waiting jobs
queue; nothing is rejected.
"""
import logging
import os
import threading
import time
from typing import Any, Awaitable, Callable, Optional

import anyio

logger = logging.getLogger(__name__)

MAX_CONCURRENT = 1
MIN_INTERVAL_SECS = float(os.getenv("PROXY_MIN_INTERVAL_SECS", "6"))


class Limiter:
    """Concurrency cap plus minimum spacing between job starts."""

    def __init__(self, max_concurrent: int = MAX_CONCURRENT, min_time: float = MIN_INTERVAL_SECS):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_time < 0:
            raise ValueError("min_time cannot be negative")
        self.max_concurrent = max_concurrent
        self.min_time = min_time
        self._capacity = anyio.CapacityLimiter(max_concurrent)
        self._start_lock = anyio.Lock()
        self._next_start = 0.0

    async def _wait_turn(self) -> None:
        async with self._start_lock:
            now = time.monotonic()
            delay = self._next_start - now
            if delay > 0:
                logger.debug(f"Rate limiter delaying job by {delay:.2f}s")
                await anyio.sleep(delay)
                now = time.monotonic()
            self._next_start = now + self.min_time

    async def schedule(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func(*args, **kwargs)`` once the limiter admits it."""
        async with self._capacity:
            await self._wait_turn()
            return await func(*args, **kwargs)


_limiter: Optional[Limiter] = None
_limiter_lock = threading.Lock()


def get_limiter() -> Limiter:
    """Process-wide limiter, created on first use."""
    global _limiter
    with _limiter_lock:
        if _limiter is None:
            _limiter = Limiter(max_concurrent=MAX_CONCURRENT, min_time=MIN_INTERVAL_SECS)
            logger.info(
                f"Proxy rate limiter ready: max_concurrent={MAX_CONCURRENT}, min_interval={MIN_INTERVAL_SECS}s"
            )
        return _limiter

"""Sliding-window rate limiters for provider APIs, keyed by (service, limit, window)."""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    async def acquire(self) -> None:
        """Wait until a request slot is free in the current window, then take it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return
                wait = self.window_seconds - (now - self._requests[0])
                logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
                await self._sleep(max(wait, 0.0))

    def reset(self) -> None:
        self._requests.clear()


class RateLimiterRegistry:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[tuple[str, int, float], RateLimiter] = {}

    def get(self, service: str, max_requests: int, window_seconds: float) -> RateLimiter:
        key = (service, max_requests, window_seconds)
        if key not in self._limiters:
            self._limiters[key] = RateLimiter(
                max_requests, window_seconds, clock=self._clock, sleep=self._sleep
            )
        return self._limiters[key]

    def clear(self) -> None:
        self._limiters.clear()

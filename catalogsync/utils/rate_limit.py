"""Call spacing for the shared marketplace quota."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator

from catalogsync.ingest.errors import ConfigurationError

LEVELS = ("page", "band", "category", "detail")


class RateLimiter:
    """Minimum spacing per nesting level plus a cap on in-flight calls.

    ``wait(level)`` sleeps until the configured interval for that level has
    elapsed since the previous ``wait`` on the same level. ``slot()`` bounds
    concurrent external calls.
    """

    def __init__(
        self,
        *,
        page_interval: float = 2.0,
        band_interval: float = 3.0,
        category_interval: float = 3.0,
        detail_interval: float = 1.0,
        max_in_flight: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_in_flight < 1:
            raise ConfigurationError("max_in_flight must be at least 1")
        self.intervals = {
            "page": page_interval,
            "band": band_interval,
            "category": category_interval,
            "detail": detail_interval,
        }
        for level, interval in self.intervals.items():
            if interval < 0:
                raise ConfigurationError(f"negative interval for {level}")
        self.max_in_flight = max_in_flight
        self._clock = clock
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_call: dict[str, float | None] = defaultdict(lambda: None)
        self._semaphore: asyncio.Semaphore | None = None

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RateLimiter":
        options = {
            "page_interval": settings.page_interval,
            "band_interval": settings.band_interval,
            "category_interval": settings.category_interval,
            "detail_interval": settings.detail_interval,
            "max_in_flight": settings.max_in_flight,
        }
        options.update(overrides)
        return cls(**options)

    async def wait(self, level: str) -> float:
        """Block until ``level`` may proceed; returns the time slept."""
        if level not in self.intervals:
            raise ConfigurationError(f"Unknown rate limit level: {level}")
        async with self._locks[level]:
            slept = 0.0
            last = self._last_call[level]
            if last is not None:
                elapsed = self._clock() - last
                remaining = self.intervals[level] - elapsed
                if remaining > 0:
                    await self._sleep(remaining)
                    slept = remaining
            self._last_call[level] = self._clock()
            return slept

    def reset(self, level: str | None = None) -> None:
        if level is None:
            self._last_call.clear()
        else:
            self._last_call.pop(level, None)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        # created lazily so the semaphore binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_in_flight)
        async with self._semaphore:
            yield

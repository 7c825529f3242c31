"""Retry helpers for marketplace calls."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from catalogsync.ingest.errors import ConfigurationError, TransientExternalError

logger = logging.getLogger(__name__)

RETRY_EXCEPTIONS = (TransientExternalError,)


@dataclass(slots=True)
class RetryPolicy:
    """Exponential backoff with jitter, applied to transient errors only."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 20.0
    jitter: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RetryPolicy":
        options: dict[str, Any] = {
            "max_attempts": settings.retry_attempts,
            "base_delay": settings.retry_base_delay,
            "max_delay": settings.retry_max_delay,
            "jitter": settings.retry_jitter,
        }
        options.update(overrides)
        return cls(**options)

    def delay_for(self, attempt: int) -> float:
        backoff = min(self.max_delay, self.base_delay * (2 ** attempt))
        return backoff + random.random() * self.jitter

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS as exc:
                if attempt == self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient error (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


def retry_async(policy: RetryPolicy | None = None):
    policy = policy or RetryPolicy()

    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await policy.call(func, *args, **kwargs)
        return wrapper

    return decorator

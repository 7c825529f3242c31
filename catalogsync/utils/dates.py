"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum

FREQUENCY_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(hours=24),
    "weekly": timedelta(days=7),
}


def utcnow() -> datetime:
    return pendulum.now("UTC")


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat()


class SystemClock:
    def now(self) -> datetime:
        return utcnow()


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self._now = as_utc(start)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta

    def set(self, value: datetime) -> None:
        self._now = as_utc(value)

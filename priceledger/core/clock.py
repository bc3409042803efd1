"""Reference clock.

Every comparison in the engine uses a single UTC clock. Services take a
clock so tests can pin "now" instead of patching datetime.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current instant as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to an instant; advance() moves it forward."""

    def __init__(self, instant: datetime):
        self._instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime.

    Naive values are taken to be UTC already (SQLite drops tzinfo on read).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

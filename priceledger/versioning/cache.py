"""Minute-bucketed memo for resolve_at results.

Resolution is pure and cheap, so this is only a convenience for list-heavy
views. Buckets are keyed by as_of floored to the minute, which matches the
minute resolution of user-entered effective dates.
"""

from __future__ import annotations

from datetime import datetime

from priceledger.core.clock import ensure_utc
from priceledger.models import PriceTier, ResolvedPrice, SubjectKey

CacheKey = tuple[SubjectKey, PriceTier, datetime]


def minute_bucket(instant: datetime) -> datetime:
    return ensure_utc(instant).replace(second=0, microsecond=0)


class ResolutionCache:
    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._entries: dict[CacheKey, ResolvedPrice] = {}
        self.hits = 0
        self.misses = 0

    def get(self, subject: SubjectKey, tier: PriceTier, as_of: datetime) -> ResolvedPrice | None:
        cached = self._entries.get((subject, tier, minute_bucket(as_of)))
        if cached is None:
            self.misses += 1
        else:
            self.hits += 1
        return cached

    def put(
        self, subject: SubjectKey, tier: PriceTier, as_of: datetime, resolved: ResolvedPrice
    ) -> None:
        if len(self._entries) >= self.max_entries:
            # Oldest insertion goes first
            self._entries.pop(next(iter(self._entries)))
        self._entries[(subject, tier, minute_bucket(as_of))] = resolved

    def invalidate(self, subject: SubjectKey, tier: PriceTier) -> None:
        for key in [k for k in self._entries if k[0] == subject and k[1] == tier]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

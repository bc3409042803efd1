"""Persistence contract for versioned prices, plus an in-memory store.

The mutation service only talks to a PriceStore. Implementations must give
read-committed isolation and a way to serialize writers per (subject, tier);
``lock()`` is that hook.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Protocol
from uuid import UUID

from priceledger.exceptions import ConflictError, NotFoundError
from priceledger.models import (
    ChangeLogEntry,
    ChangeLogFilters,
    PriceRecord,
    PriceTier,
    SubjectKey,
)

# Fields a pending record may have patched
PATCHABLE_FIELDS = frozenset(
    {"amounts", "exchange_rate", "effective_from", "change_reason", "changed_by", "source"}
)


class PriceStore(Protocol):
    def lock(self, subject: SubjectKey, tier: PriceTier) -> Any:
        """Async context manager serializing writers for (subject, tier)."""
        ...

    async def list_current_and_pending(
        self, subject: SubjectKey, tier: PriceTier, now: datetime
    ) -> list[PriceRecord]:
        """Records still open or ending after now (active, pending)."""
        ...

    async def list_history(
        self, subject: SubjectKey, tier: PriceTier | None = None
    ) -> list[PriceRecord]:
        """Every record for subject (optionally one tier), newest first."""
        ...

    async def get(self, price_id: UUID) -> PriceRecord | None: ...

    async def insert(self, record: PriceRecord) -> PriceRecord: ...

    async def update_pending_by_id(self, price_id: UUID, patch: dict[str, Any]) -> PriceRecord: ...

    async def stamp_effective_to(
        self, price_id: UUID, effective_to: datetime | None
    ) -> PriceRecord: ...

    async def delete_pending_by_id(self, price_id: UUID) -> None: ...

    async def list_pending_between(
        self, start: datetime, end: datetime, product_id: str | None = None
    ) -> list[PriceRecord]:
        """Open-ended records whose effective_from lies in (start, end]."""
        ...

    async def append_change_log(self, entry: ChangeLogEntry) -> None: ...

    async def list_change_log(
        self,
        subject: SubjectKey | None,
        filters: ChangeLogFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[ChangeLogEntry], int]:
        """Entries newest first (changed_at desc) and the total match count."""
        ...


def _subject_matches(subject: SubjectKey | None, candidate: SubjectKey) -> bool:
    if subject is None:
        return True
    return candidate == subject


class InMemoryPriceStore:
    """Dict-backed PriceStore; used by tests, the CLI dry-run and demos."""

    def __init__(self) -> None:
        self._records: dict[UUID, PriceRecord] = {}
        self._change_log: list[ChangeLogEntry] = []
        self._locks: dict[tuple[SubjectKey, PriceTier], asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def lock(self, subject: SubjectKey, tier: PriceTier) -> AsyncIterator[None]:
        async with self._locks[(subject, tier)]:
            yield

    def _for_key(self, subject: SubjectKey, tier: PriceTier) -> list[PriceRecord]:
        return [r for r in self._records.values() if r.subject == subject and r.tier == tier]

    async def list_current_and_pending(
        self, subject: SubjectKey, tier: PriceTier, now: datetime
    ) -> list[PriceRecord]:
        return sorted(
            (
                r
                for r in self._for_key(subject, tier)
                if r.effective_to is None or r.effective_to > now
            ),
            key=lambda r: r.effective_from,
        )

    async def list_history(
        self, subject: SubjectKey, tier: PriceTier | None = None
    ) -> list[PriceRecord]:
        records = [
            r
            for r in self._records.values()
            if r.subject == subject and (tier is None or r.tier == tier)
        ]
        return sorted(records, key=lambda r: r.effective_from, reverse=True)

    async def get(self, price_id: UUID) -> PriceRecord | None:
        return self._records.get(price_id)

    async def insert(self, record: PriceRecord) -> PriceRecord:
        if record.effective_to is None and any(
            r.effective_to is None for r in self._for_key(record.subject, record.tier)
        ):
            # Mirrors the SQL partial unique index on open-ended records
            raise ConflictError(
                f"An open-ended {record.tier.value} price already exists for {record.subject}"
            )
        self._records[record.id] = record
        return record

    async def update_pending_by_id(self, price_id: UUID, patch: dict[str, Any]) -> PriceRecord:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch fields: {sorted(unknown)}")
        record = self._require(price_id)
        updated = record.model_copy(update=patch)
        self._records[price_id] = updated
        return updated

    async def stamp_effective_to(
        self, price_id: UUID, effective_to: datetime | None
    ) -> PriceRecord:
        record = self._require(price_id)
        updated = record.model_copy(update={"effective_to": effective_to})
        self._records[price_id] = updated
        return updated

    async def delete_pending_by_id(self, price_id: UUID) -> None:
        self._require(price_id)
        del self._records[price_id]

    async def list_pending_between(
        self, start: datetime, end: datetime, product_id: str | None = None
    ) -> list[PriceRecord]:
        return sorted(
            (
                r
                for r in self._records.values()
                if r.effective_to is None
                and start < r.effective_from <= end
                and (product_id is None or r.subject.product_id == product_id)
            ),
            key=lambda r: r.effective_from,
        )

    async def append_change_log(self, entry: ChangeLogEntry) -> None:
        self._change_log.append(entry)

    async def list_change_log(
        self,
        subject: SubjectKey | None,
        filters: ChangeLogFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[ChangeLogEntry], int]:
        matching = [
            e
            for e in self._change_log
            if _subject_matches(subject, e.subject) and filters.matches(e)
        ]
        # Stable sort keeps emission order for entries sharing a timestamp
        matching.sort(key=lambda e: e.changed_at, reverse=True)
        return matching[offset : offset + limit], len(matching)

    def _require(self, price_id: UUID) -> PriceRecord:
        record = self._records.get(price_id)
        if record is None:
            raise NotFoundError(f"Price record {price_id} not found")
        return record

"""Temporal resolution of versioned prices.

Given every record for one (subject, tier) and an instant, work out which
record is in effect and which one is scheduled next. Everything here is a
pure function of the record set and the instant: no I/O, no mutation.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Sequence

from priceledger.core.clock import ensure_utc
from priceledger.models import (
    EPOCH,
    LegacyPrice,
    PriceRecord,
    PriceState,
    PriceTier,
    ResolvedPrice,
    SubjectKey,
)


def find_current(records: Iterable[PriceRecord], as_of: datetime) -> PriceRecord | None:
    """Record covering as_of; latest effective_from wins if several do."""
    current: PriceRecord | None = None
    for record in records:
        if not record.covers(as_of):
            continue
        if current is None or record.effective_from > current.effective_from:
            current = record
    return current


def find_pending(records: Iterable[PriceRecord], as_of: datetime) -> PriceRecord | None:
    """Open-ended record starting after as_of (earliest if data is corrupt)."""
    pending: PriceRecord | None = None
    for record in records:
        if not record.is_pending(as_of):
            continue
        if pending is None or record.effective_from < pending.effective_from:
            pending = record
    return pending


def fallback_record(
    fallback: LegacyPrice,
    subject: SubjectKey,
    tier: PriceTier,
    records: Sequence[PriceRecord],
) -> PriceRecord | None:
    """Synthesize a record from a flat legacy price.

    It starts at the epoch and ends where versioned history begins, so it
    never overlaps a real record.
    """
    first_start = min((r.effective_from for r in records), default=None)
    if first_start is not None and first_start <= EPOCH:
        return None
    return PriceRecord(
        subject=subject,
        tier=tier,
        amounts=fallback.amounts,
        exchange_rate=fallback.exchange_rate,
        effective_from=EPOCH,
        effective_to=first_start,
        source="legacy",
        created_at=EPOCH,
    )


def resolve_at(
    records: Sequence[PriceRecord],
    as_of: datetime,
    fallback: LegacyPrice | None = None,
    subject: SubjectKey | None = None,
    tier: PriceTier | None = None,
) -> ResolvedPrice:
    """Resolve the current and pending price at as_of.

    Args:
        records: Every record for one (subject, tier)
        as_of: Instant to resolve at
        fallback: Flat price used when no versioned record covers as_of
        subject: Needed only to label the synthesized fallback record
        tier: Needed only to label the synthesized fallback record

    Returns:
        ResolvedPrice; both slots None when nothing is configured
    """
    as_of = ensure_utc(as_of)
    current = find_current(records, as_of)

    if current is None and fallback is not None:
        if subject is None or tier is None:
            if not records:
                raise ValueError("subject and tier are required to resolve a fallback price")
            subject, tier = records[0].subject, records[0].tier
        legacy = fallback_record(fallback, subject, tier, records)
        if legacy is not None and legacy.covers(as_of):
            current = legacy

    return ResolvedPrice(as_of=as_of, current=current, pending=find_pending(records, as_of))


def price_state(
    record: PriceRecord, now: datetime, records: Iterable[PriceRecord] = ()
) -> PriceState:
    """Derive the lifecycle state of record at now.

    records is the rest of the (subject, tier) set; it decides between
    SUPERSEDED and EXPIRED for a closed record.
    """
    now = ensure_utc(now)
    if record.effective_from > now:
        return PriceState.PENDING
    if record.effective_to is None or now < record.effective_to:
        return PriceState.ACTIVE

    has_successor = any(
        other.id != record.id and other.effective_from >= record.effective_to
        for other in records
    )
    return PriceState.SUPERSEDED if has_successor else PriceState.EXPIRED


def find_overlaps(
    records: Iterable[PriceRecord], now: datetime
) -> list[tuple[PriceRecord, PriceRecord]]:
    """Pairs of started records whose [from, to) windows overlap."""
    now = ensure_utc(now)
    started = sorted((r for r in records if r.has_started(now)), key=lambda r: r.effective_from)

    overlaps = []
    for i, earlier in enumerate(started):
        for later in started[i + 1 :]:
            if earlier.effective_to is None or later.effective_from < earlier.effective_to:
                overlaps.append((earlier, later))
    return overlaps


def count_pending(records: Iterable[PriceRecord], now: datetime) -> int:
    now = ensure_utc(now)
    return sum(1 for r in records if r.is_pending(now))


def upcoming(
    records: Iterable[PriceRecord], now: datetime, hours_ahead: int = 24
) -> list[PriceRecord]:
    """Pending records that take effect within hours_ahead of now."""
    now = ensure_utc(now)
    horizon = now + timedelta(hours=hours_ahead)
    return sorted(
        (r for r in records if r.is_pending(now) and r.effective_from <= horizon),
        key=lambda r: r.effective_from,
    )

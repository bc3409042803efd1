"""Exchange rate provider interface and shared conversion logic.

A stored rate reads "1 from_currency = rate to_currency". The same record
also answers the reverse pair; converting in that direction divides by the
rate so CNY -> IDR -> CNY comes back to the same figure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Protocol
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from priceledger.core.clock import ensure_utc
from priceledger.currency.rounding import normalize_currency, quantize_amount
from priceledger.exceptions import ConflictError, NotFoundError, ValidationError
from priceledger.models import ExchangeRateRecord, Page

logger = logging.getLogger(__name__)

ONE = Decimal(1)


class ExchangeRateProvider(Protocol):
    async def get_rate(self, from_currency: str, to_currency: str, as_of: datetime) -> Decimal:
        """Rate valid at as_of; raises NotFoundError when none applies."""
        ...

    async def convert(
        self, amount: Decimal, from_currency: str, to_currency: str, as_of: datetime
    ) -> Decimal:
        """amount converted and rounded to the target currency's precision."""
        ...


def select_rate(
    records: Iterable[ExchangeRateRecord],
    from_currency: str,
    to_currency: str,
    as_of: datetime,
) -> tuple[ExchangeRateRecord, bool] | None:
    """Pick the applicable approved record for a pair at as_of.

    A direct record wins over a reverse one; among candidates the latest
    effective_from wins.

    Returns:
        (record, inverted) or None. inverted is True when the record is
        stored for to_currency -> from_currency.
    """
    direct: ExchangeRateRecord | None = None
    reverse: ExchangeRateRecord | None = None

    for record in records:
        if not record.approved or not record.covers(as_of):
            continue
        if record.from_currency == from_currency and record.to_currency == to_currency:
            if direct is None or record.effective_from > direct.effective_from:
                direct = record
        elif record.from_currency == to_currency and record.to_currency == from_currency:
            if reverse is None or record.effective_from > reverse.effective_from:
                reverse = record

    if direct is not None:
        return direct, False
    if reverse is not None:
        return reverse, True
    return None


class BaseRateProvider(ABC):
    """Conversion on top of a record lookup; subclasses supply candidates."""

    @abstractmethod
    async def candidate_rates(
        self, from_currency: str, to_currency: str, as_of: datetime
    ) -> list[ExchangeRateRecord]:
        """Records for the pair (either direction) that may apply at as_of."""

    async def _lookup(
        self, from_currency: str, to_currency: str, as_of: datetime
    ) -> tuple[ExchangeRateRecord, bool]:
        candidates = await self.candidate_rates(from_currency, to_currency, as_of)
        selected = select_rate(candidates, from_currency, to_currency, as_of)
        if selected is None:
            raise NotFoundError(
                f"No approved exchange rate {from_currency}->{to_currency} "
                f"as of {as_of.isoformat()}"
            )
        return selected

    async def get_rate(self, from_currency: str, to_currency: str, as_of: datetime) -> Decimal:
        """Rate such that 1 from_currency = rate to_currency at as_of.

        Raises:
            NotFoundError: If no approved rate covers as_of for the pair
        """
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        if from_currency == to_currency:
            return ONE

        record, inverted = await self._lookup(from_currency, to_currency, ensure_utc(as_of))
        return ONE / record.rate if inverted else record.rate

    async def convert(
        self, amount: Decimal, from_currency: str, to_currency: str, as_of: datetime
    ) -> Decimal:
        """Convert amount, rounded per target currency.

        Never falls back to 1:1 for a missing pair; NotFoundError propagates.
        """
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)
        amount = Decimal(amount)

        if from_currency == to_currency:
            return quantize_amount(amount, to_currency)

        record, inverted = await self._lookup(from_currency, to_currency, ensure_utc(as_of))
        raw = amount / record.rate if inverted else amount * record.rate

        logger.debug(
            f"Converted {amount} {from_currency} -> {raw} {to_currency} "
            f"(rate {record.rate}, inverted={inverted})"
        )
        return quantize_amount(raw, to_currency)


class ExchangeRateBook(ExchangeRateProvider, Protocol):
    """A provider whose rates can also be listed and maintained."""

    async def list_current(
        self, as_of: datetime, from_currency: str | None = None, to_currency: str | None = None
    ) -> list[ExchangeRateRecord]: ...

    async def list_history(
        self,
        from_currency: str | None = None,
        to_currency: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[ExchangeRateRecord]: ...

    async def create_rate(self, record: ExchangeRateRecord) -> ExchangeRateRecord: ...

    async def update_rate(self, rate_id: UUID, patch: dict[str, Any]) -> ExchangeRateRecord: ...


RATE_PATCHABLE_FIELDS = frozenset(
    {"rate", "effective_from", "effective_to", "approved", "source", "change_reason", "changed_by"}
)


def same_pair(record: ExchangeRateRecord, other: ExchangeRateRecord) -> bool:
    """True when both records quote the same direction of the same pair."""
    return (
        record.from_currency == other.from_currency
        and record.to_currency == other.to_currency
    )


def current_rates(
    records: Iterable[ExchangeRateRecord], as_of: datetime
) -> list[ExchangeRateRecord]:
    """The approved record in force at as_of for each stored direction."""
    latest: dict[tuple[str, str], ExchangeRateRecord] = {}
    for record in records:
        if not record.approved or not record.covers(as_of):
            continue
        key = (record.from_currency, record.to_currency)
        if key not in latest or record.effective_from > latest[key].effective_from:
            latest[key] = record
    return sorted(latest.values(), key=lambda r: (r.from_currency, r.to_currency))


def plan_new_rate(
    existing: Iterable[ExchangeRateRecord], new: ExchangeRateRecord
) -> tuple[ExchangeRateRecord, ExchangeRateRecord | None]:
    """Fit a new rate into its pair's timeline.

    An approved rate closes the approved record covering its start, and an
    open-ended one is closed at the next approved start after it, so approved
    windows for a pair never overlap.

    Returns:
        (record to insert, record whose effective_to becomes new.effective_from)

    Raises:
        ConflictError: An approved rate for the pair already starts at that instant
    """
    if not new.approved:
        return new, None

    siblings = [r for r in existing if r.approved and same_pair(r, new) and r.id != new.id]
    if any(r.effective_from == new.effective_from for r in siblings):
        raise ConflictError(
            f"An approved {new.from_currency}->{new.to_currency} rate already starts at "
            f"{new.effective_from.isoformat()}"
        )

    covering = next((r for r in siblings if r.covers(new.effective_from)), None)

    later = [r.effective_from for r in siblings if r.effective_from > new.effective_from]
    if later:
        next_start = min(later)
        if new.effective_to is None or new.effective_to > next_start:
            new = new.model_copy(update={"effective_to": next_start})

    return new, covering


def check_no_overlap(existing: Iterable[ExchangeRateRecord], candidate: ExchangeRateRecord) -> None:
    """Raise ConflictError if candidate's window overlaps an approved sibling."""
    if not candidate.approved:
        return
    for other in existing:
        if other.id == candidate.id or not other.approved or not same_pair(other, candidate):
            continue
        starts_before_other_ends = other.effective_to is None or candidate.effective_from < other.effective_to
        ends_after_other_starts = candidate.effective_to is None or other.effective_from < candidate.effective_to
        if starts_before_other_ends and ends_after_other_starts:
            raise ConflictError(
                f"Rate {candidate.id} would overlap {other.id} "
                f"({candidate.from_currency}->{candidate.to_currency})"
            )


def apply_rate_patch(record: ExchangeRateRecord, patch: dict[str, Any]) -> ExchangeRateRecord:
    """Validated copy of record with patch applied.

    Raises:
        ValidationError: Unknown field or an invalid resulting record
    """
    unknown = set(patch) - RATE_PATCHABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update exchange rate fields: {sorted(unknown)}")
    try:
        return ExchangeRateRecord.model_validate({**record.model_dump(), **patch})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid exchange rate update: {e.errors()[0]['msg']}") from e

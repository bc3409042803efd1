"""Change log derivation and recording.

One ChangeLogEntry per (tier, currency) whose amount changed in a mutation.
Entries are write-once: the recorder only ever appends.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from priceledger.exceptions import ValidationError
from priceledger.models import (
    ChangeLogEntry,
    ChangeLogFilters,
    ChangeType,
    Page,
    PriceRecord,
    SubjectKey,
)

if TYPE_CHECKING:
    from priceledger.versioning.store import PriceStore

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)
PERCENT_PLACES = Decimal("0.0001")


def compute_delta(
    old: Decimal | None, new: Decimal | None
) -> tuple[Decimal | None, Decimal | None]:
    """Return (delta, delta_percentage) for an amount change.

    delta is None unless both sides exist; the percentage is also None when
    the old amount is zero.
    """
    if old is None or new is None:
        return None, None
    delta = new - old
    if old == 0:
        return delta, None
    return delta, (delta / old * HUNDRED).quantize(PERCENT_PLACES)


def diff_records(
    before: PriceRecord | None,
    after: PriceRecord | None,
    change_type: ChangeType,
    changed_by: str,
    changed_at: datetime,
    reason: str | None = None,
) -> list[ChangeLogEntry]:
    """Derive audit entries for one mutation.

    Args:
        before: Record state prior to the mutation (None on first create)
        after: Record state after it (None on delete)
        change_type: Kind of mutation
        changed_by: Actor
        changed_at: Mutation instant
        reason: Change reason; defaults to the record's own

    Returns:
        One entry per currency whose amount changed. An update that moves the
        window without touching any amount yields one zero-delta entry per
        currency so the reschedule is still audited.
    """
    reference = after or before
    if reference is None:
        return []

    before_amounts = before.amounts if before else {}
    after_amounts = after.amounts if after else {}
    currencies = sorted(set(before_amounts) | set(after_amounts))

    window_moved = (
        change_type == ChangeType.UPDATE
        and before is not None
        and after is not None
        and (
            before.effective_from != after.effective_from
            or before.effective_to != after.effective_to
        )
    )

    entries = []
    for currency in currencies:
        old = before_amounts.get(currency)
        new = after_amounts.get(currency)
        amount_changed = old != new
        if not amount_changed and not (window_moved and new is not None):
            continue

        delta, percentage = compute_delta(old, new)
        entries.append(
            ChangeLogEntry(
                subject=reference.subject,
                price_id=reference.id,
                tier=reference.tier,
                currency=currency,
                change_type=change_type,
                old_amount=old,
                new_amount=new,
                delta=delta,
                delta_percentage=percentage,
                old_effective_from=before.effective_from if before else None,
                new_effective_from=after.effective_from if after else None,
                old_effective_to=before.effective_to if before else None,
                new_effective_to=after.effective_to if after else None,
                change_reason=reason if reason is not None else reference.change_reason,
                changed_by=changed_by,
                changed_at=changed_at,
            )
        )
    return entries


class ChangeLogRecorder:
    """Derives audit entries and appends them to the store."""

    def __init__(self, store: PriceStore):
        self.store = store

    async def record(
        self,
        before: PriceRecord | None,
        after: PriceRecord | None,
        change_type: ChangeType,
        changed_by: str,
        changed_at: datetime,
        reason: str | None = None,
    ) -> list[ChangeLogEntry]:
        entries = diff_records(before, after, change_type, changed_by, changed_at, reason)
        for entry in entries:
            await self.store.append_change_log(entry)

        if entries:
            reference = after or before
            logger.info(
                f"Recorded {len(entries)} {change_type.value} change(s) for "
                f"{reference.subject} [{reference.tier.value}] by {changed_by}"
            )
        return entries

    async def list_change_log(
        self,
        subject: SubjectKey | None,
        filters: ChangeLogFilters | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[ChangeLogEntry]:
        """Audit entries, newest first.

        Raises:
            ValidationError: If page or size is not positive
        """
        if page < 1 or size < 1:
            raise ValidationError("page and size must be positive")

        items, total = await self.store.list_change_log(
            subject, filters or ChangeLogFilters(), (page - 1) * size, size
        )
        return Page[ChangeLogEntry](items=items, total=total, page=page, size=size)

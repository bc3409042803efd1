"""Price mutation service: the only writer of versioned price records.

Enforces, independent of any caller:
- at most one pending record per (subject, tier)
- a pending record starts strictly in the future (by default no earlier than
  the next business day)
- started records are never modified or deleted, only superseded
- the superseded record's effective_to is stamped eagerly so history keeps
  accurate, queryable intervals
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from priceledger.config import PricingConfig
from priceledger.core.business_time import start_of_next_local_day, to_utc_instant
from priceledger.core.clock import Clock, SystemClock, ensure_utc
from priceledger.currency.linkage import apply_primary, primary_currency_for
from priceledger.currency.rounding import normalize_currency, quantize_amounts
from priceledger.exceptions import ConflictError, NotFoundError, ValidationError
from priceledger.models import (
    ChangeLogEntry,
    ChangeLogFilters,
    ChangeType,
    LegacyPrice,
    LinkageMode,
    Page,
    PriceRecord,
    PriceTier,
    ResolvedPrice,
    SubjectKey,
)
from priceledger.rates.provider import ExchangeRateProvider
from priceledger.versioning import resolver
from priceledger.versioning.cache import ResolutionCache
from priceledger.versioning.changelog import ChangeLogRecorder
from priceledger.versioning.store import PriceStore

logger = logging.getLogger(__name__)


def validate_subject(subject: SubjectKey | str) -> SubjectKey:
    """Normalize a subject key, rejecting blank identifiers.

    Raises:
        ValidationError: If product_id is blank or organization_id is blank-but-set
    """
    if isinstance(subject, str):
        subject = SubjectKey(product_id=subject)
    if not isinstance(subject, SubjectKey):
        raise ValidationError(f"Malformed subject key: {subject!r}")

    product_id = (subject.product_id or "").strip()
    if not product_id:
        raise ValidationError("subject product_id is required")

    organization_id = subject.organization_id
    if organization_id is not None:
        organization_id = organization_id.strip()
        if not organization_id:
            raise ValidationError("subject organization_id must not be blank when given")

    return SubjectKey(product_id=product_id, organization_id=organization_id)


def validate_tier(tier: PriceTier | str) -> PriceTier:
    try:
        return PriceTier(tier)
    except ValueError as e:
        raise ValidationError(f"Unknown price tier: {tier!r}") from e


def _to_decimal(value: Any, field: str) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, float):
        value = str(value)
    try:
        parsed = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"{field} is not a valid decimal: {value!r}") from e
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return parsed


class PriceMutationService:
    """Create, reschedule and withdraw pending prices; resolve on read."""

    def __init__(
        self,
        store: PriceStore,
        clock: Clock | None = None,
        rate_provider: ExchangeRateProvider | None = None,
        config: PricingConfig | None = None,
        cache: ResolutionCache | None = None,
    ):
        """Initialize service.

        Args:
            store: Persistence collaborator
            clock: Reference UTC clock (defaults to the system clock)
            rate_provider: Used to fetch a rate when linkage needs one and
                none was supplied
            config: Pricing rules (schedule policy, business offset)
            cache: Optional resolve_at memo
        """
        self.store = store
        self.clock = clock or SystemClock()
        self.rate_provider = rate_provider
        self.config = config or PricingConfig()
        self.cache = cache
        self.changelog = ChangeLogRecorder(store)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def resolve_at(
        self,
        subject: SubjectKey | str,
        tier: PriceTier | str,
        as_of: datetime | None = None,
        fallback: LegacyPrice | None = None,
    ) -> ResolvedPrice:
        """Current and pending price for (subject, tier) at as_of (default now)."""
        subject = validate_subject(subject)
        tier = validate_tier(tier)
        as_of = ensure_utc(as_of) if as_of is not None else self.clock.now()

        use_cache = self.cache is not None and fallback is None
        if use_cache:
            cached = self.cache.get(subject, tier, as_of)
            if cached is not None:
                return cached.model_copy(update={"as_of": as_of})

        records = await self.store.list_history(subject, tier)
        resolved = resolver.resolve_at(records, as_of, fallback, subject=subject, tier=tier)

        logger.debug(
            f"Resolved {subject} [{tier.value}] at {as_of.isoformat()}: "
            f"current={resolved.current.id if resolved.current else None} "
            f"pending={resolved.pending.id if resolved.pending else None}"
        )

        if use_cache:
            self.cache.put(subject, tier, as_of, resolved)
        return resolved

    async def list_history(
        self, subject: SubjectKey | str, tier: PriceTier | str | None = None
    ) -> list[PriceRecord]:
        """All versions for subject, newest effective_from first."""
        subject = validate_subject(subject)
        return await self.store.list_history(
            subject, validate_tier(tier) if tier is not None else None
        )

    async def list_upcoming(
        self, hours_ahead: int | None = None, product_id: str | None = None
    ) -> list[PriceRecord]:
        """Pending prices taking effect within hours_ahead of now."""
        hours = hours_ahead if hours_ahead is not None else self.config.upcoming_hours_ahead
        if hours < 0:
            raise ValidationError("hours_ahead must not be negative")
        now = self.clock.now()
        records = await self.store.list_pending_between(
            now, now + timedelta(hours=hours), product_id
        )
        return resolver.upcoming(records, now, hours)

    async def list_change_log(
        self,
        subject: SubjectKey | str | None,
        filters: ChangeLogFilters | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[ChangeLogEntry]:
        subject = validate_subject(subject) if subject is not None else None
        return await self.changelog.list_change_log(subject, filters, page, size)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_or_update_pending(
        self,
        subject: SubjectKey | str,
        tier: PriceTier | str,
        amounts: dict[str, Any],
        exchange_rate: Decimal | str | None,
        effective_from_local: str | datetime,
        reason: str | None,
        *,
        linkage_mode: LinkageMode | str = LinkageMode.NONE,
        changed_by: str = "system",
        source: str | None = None,
    ) -> PriceRecord:
        """Schedule a future price, or edit the one already scheduled.

        Args:
            subject: Product (and optional organization)
            tier: Price tier
            amounts: Currency code -> amount (None allowed per currency)
            exchange_rate: IDR per 1 CNY; None keeps the pending record's rate
            effective_from_local: Business-local ``YYYY-MM-DDTHH:mm`` (or datetime)
            reason: Change reason recorded on the record and in the audit log
            linkage_mode: Derive the linked currency from the primary one
            changed_by: Actor
            source: Provenance label

        Returns:
            The pending record as stored

        Raises:
            ValidationError: Bad subject, tier, amounts or rate
            ConflictError: effective_from is not far enough in the future
            NotFoundError: Linkage needs a rate and the provider has none
        """
        subject = validate_subject(subject)
        tier = validate_tier(tier)
        linkage_mode = LinkageMode(linkage_mode)

        rate = _to_decimal(exchange_rate, "exchange_rate")
        if rate is not None and rate <= 0:
            raise ValidationError("exchange_rate must be greater than 0")

        effective_from = to_utc_instant(
            effective_from_local, self.config.business_utc_offset_hours
        )
        now = self.clock.now()
        self._check_schedulable(effective_from, now)

        parsed = {
            normalize_currency(code): _to_decimal(value, f"amounts[{code}]")
            for code, value in amounts.items()
        }
        primary = primary_currency_for(linkage_mode)
        if primary is not None and parsed.get(primary) is not None:
            if rate is None:
                rate = await self._lookup_rate(effective_from)
            parsed = apply_primary(parsed, rate, linkage_mode)
        normalized = self._check_amounts(parsed)

        async with self.store.lock(subject, tier):
            records = await self.store.list_current_and_pending(subject, tier, now)
            pending = resolver.find_pending(records, now)

            if pending is not None:
                record = await self._update_pending(
                    pending, normalized, rate, effective_from, reason, changed_by, source, now
                )
            else:
                record = await self._create_pending(
                    subject, tier, records, normalized, rate, effective_from,
                    reason, changed_by, source, now,
                )

        if self.cache is not None:
            self.cache.invalidate(subject, tier)
        return record

    async def delete_pending(
        self,
        subject: SubjectKey | str,
        tier: PriceTier | str,
        price_id: UUID,
        *,
        changed_by: str = "system",
        reason: str | None = None,
    ) -> None:
        """Withdraw a pending record and re-open the record it superseded.

        Raises:
            NotFoundError: No such record for (subject, tier)
            ConflictError: The record has already become active
        """
        subject = validate_subject(subject)
        tier = validate_tier(tier)
        now = self.clock.now()

        async with self.store.lock(subject, tier):
            record = await self.store.get(price_id)
            if record is None or record.subject != subject or record.tier != tier:
                raise NotFoundError(f"No {tier.value} price {price_id} for {subject}")
            if record.has_started(now):
                raise ConflictError(
                    f"Price {price_id} became effective at "
                    f"{record.effective_from.isoformat()} and can no longer be deleted"
                )

            await self.store.delete_pending_by_id(price_id)
            await self._reopen_superseded(record, now)

            await self.changelog.record(
                record, None, ChangeType.DELETE, changed_by, now, reason or record.change_reason
            )

        logger.info(
            f"Deleted pending {tier.value} price {price_id} for {subject} "
            f"(was effective {record.effective_from.isoformat()})"
        )
        if self.cache is not None:
            self.cache.invalidate(subject, tier)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_schedulable(self, effective_from: datetime, now: datetime) -> None:
        if effective_from <= now:
            raise ConflictError(
                f"effective_from {effective_from.isoformat()} must be later than "
                f"now ({now.isoformat()})"
            )
        if self.config.schedule_policy == "next_day":
            earliest = start_of_next_local_day(now, self.config.business_utc_offset_hours)
            if effective_from < earliest:
                raise ConflictError(
                    f"effective_from {effective_from.isoformat()} is earlier than the "
                    f"start of the next business day ({earliest.isoformat()})"
                )

    @staticmethod
    def _check_amounts(amounts: dict[str, Decimal | None]) -> dict[str, Decimal | None]:
        if not any(amount is not None for amount in amounts.values()):
            raise ValidationError("At least one currency amount is required")
        if any(amount is not None and amount < 0 for amount in amounts.values()):
            raise ValidationError("Amounts must not be negative")
        return quantize_amounts(amounts)

    async def _lookup_rate(self, effective_from: datetime) -> Decimal:
        if self.rate_provider is None:
            raise ValidationError("exchange_rate is required when a linkage mode is active")
        return await self.rate_provider.get_rate(
            self.config.base_currency, self.config.quote_currency, effective_from
        )

    async def _create_pending(
        self,
        subject: SubjectKey,
        tier: PriceTier,
        records: list[PriceRecord],
        amounts: dict[str, Decimal | None],
        rate: Decimal | None,
        effective_from: datetime,
        reason: str | None,
        changed_by: str,
        source: str | None,
        now: datetime,
    ) -> PriceRecord:
        current = resolver.find_current(records, now)
        supersedes_id = None

        # Stamp before insert: only one open-ended record may exist per key
        if current is not None and (
            current.effective_to is None or current.effective_to > effective_from
        ):
            await self.store.stamp_effective_to(current.id, effective_from)
            supersedes_id = current.id

        record = PriceRecord(
            subject=subject,
            tier=tier,
            amounts=amounts,
            exchange_rate=rate,
            effective_from=effective_from,
            effective_to=None,
            source=source,
            change_reason=reason,
            changed_by=changed_by,
            created_at=now,
            supersedes_id=supersedes_id,
        )
        stored = await self.store.insert(record)

        await self.changelog.record(current, stored, ChangeType.CREATE, changed_by, now, reason)

        logger.info(
            f"Scheduled {tier.value} price for {subject} from "
            f"{effective_from.isoformat()}: {_fmt_amounts(stored.amounts)}"
            + (f" (supersedes {supersedes_id})" if supersedes_id else "")
        )
        return stored

    async def _update_pending(
        self,
        pending: PriceRecord,
        amounts: dict[str, Decimal | None],
        rate: Decimal | None,
        effective_from: datetime,
        reason: str | None,
        changed_by: str,
        source: str | None,
        now: datetime,
    ) -> PriceRecord:
        patch: dict[str, Any] = {
            "amounts": amounts,
            "effective_from": effective_from,
            "changed_by": changed_by,
        }
        if rate is not None:
            patch["exchange_rate"] = rate
        if reason is not None:
            patch["change_reason"] = reason
        if source is not None:
            patch["source"] = source

        if effective_from != pending.effective_from:
            await self._move_superseded_stamp(pending, effective_from)

        updated = await self.store.update_pending_by_id(pending.id, patch)
        await self.changelog.record(
            pending, updated, ChangeType.UPDATE, changed_by, now, reason
        )

        logger.info(
            f"Updated pending {updated.tier.value} price {updated.id} for "
            f"{updated.subject}: {_fmt_amounts(updated.amounts)} from "
            f"{updated.effective_from.isoformat()}"
        )
        return updated

    async def _move_superseded_stamp(self, pending: PriceRecord, effective_from: datetime) -> None:
        if pending.supersedes_id is None:
            return
        superseded = await self.store.get(pending.supersedes_id)
        if superseded is None or superseded.effective_to != pending.effective_from:
            return
        await self.store.stamp_effective_to(superseded.id, effective_from)

    async def _reopen_superseded(self, deleted: PriceRecord, now: datetime) -> None:
        superseded: PriceRecord | None = None
        if deleted.supersedes_id is not None:
            superseded = await self.store.get(deleted.supersedes_id)
        else:
            records = await self.store.list_current_and_pending(
                deleted.subject, deleted.tier, now
            )
            superseded = next(
                (
                    r
                    for r in records
                    if r.has_started(now) and r.effective_to == deleted.effective_from
                ),
                None,
            )

        if superseded is None or superseded.effective_to != deleted.effective_from:
            return
        await self.store.stamp_effective_to(superseded.id, None)
        logger.info(f"Re-opened {superseded.tier.value} price {superseded.id} for {superseded.subject}")


def _fmt_amounts(amounts: dict[str, Decimal | None]) -> str:
    return ", ".join(f"{code} {amount}" for code, amount in sorted(amounts.items()) if amount is not None)

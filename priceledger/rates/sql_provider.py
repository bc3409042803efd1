"""Exchange rates read from the exchange_rates table."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from priceledger.core.clock import ensure_utc
from priceledger.currency.rounding import normalize_currency
from priceledger.db.models import ExchangeRateModel
from priceledger.exceptions import NotFoundError, ValidationError
from priceledger.models import ExchangeRateRecord, Page
from priceledger.rates.provider import (
    BaseRateProvider,
    apply_rate_patch,
    check_no_overlap,
    current_rates,
    plan_new_rate,
)

logger = logging.getLogger(__name__)


def _row_to_rate(row: ExchangeRateModel) -> ExchangeRateRecord:
    return ExchangeRateRecord(
        id=row.id,
        from_currency=row.from_currency,
        to_currency=row.to_currency,
        rate=row.rate,
        effective_from=ensure_utc(row.effective_from),
        effective_to=ensure_utc(row.effective_to) if row.effective_to else None,
        approved=row.approved,
        source=row.source,
        change_reason=row.change_reason,
        changed_by=row.changed_by,
    )


class SqlExchangeRateProvider(BaseRateProvider):
    """Approved rates valid at as_of, either direction of the pair."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def candidate_rates(
        self, from_currency: str, to_currency: str, as_of: datetime
    ) -> list[ExchangeRateRecord]:
        stmt = select(ExchangeRateModel).where(
            or_(
                and_(
                    ExchangeRateModel.from_currency == from_currency,
                    ExchangeRateModel.to_currency == to_currency,
                ),
                and_(
                    ExchangeRateModel.from_currency == to_currency,
                    ExchangeRateModel.to_currency == from_currency,
                ),
            ),
            ExchangeRateModel.approved.is_(True),
            ExchangeRateModel.effective_from <= as_of,
            or_(
                ExchangeRateModel.effective_to.is_(None),
                ExchangeRateModel.effective_to > as_of,
            ),
        )
        result = await self.session.execute(stmt)
        return [_row_to_rate(row) for row in result.scalars().all()]

    async def add_rates(self, records: Iterable[ExchangeRateRecord]) -> int:
        """Insert rate records (used to seed from YAML). Returns the count."""
        count = 0
        for record in records:
            self.session.add(
                ExchangeRateModel(
                    id=record.id,
                    from_currency=record.from_currency,
                    to_currency=record.to_currency,
                    rate=record.rate,
                    effective_from=record.effective_from,
                    effective_to=record.effective_to,
                    approved=record.approved,
                    source=record.source,
                    change_reason=record.change_reason,
                    changed_by=record.changed_by,
                )
            )
            count += 1
        await self.session.flush()
        logger.info(f"Stored {count} exchange rates")
        return count

    def _pair_conditions(self, from_currency: str | None, to_currency: str | None) -> list:
        conditions = []
        if from_currency:
            conditions.append(ExchangeRateModel.from_currency == normalize_currency(from_currency))
        if to_currency:
            conditions.append(ExchangeRateModel.to_currency == normalize_currency(to_currency))
        return conditions

    async def _pair_records(self, from_currency: str, to_currency: str) -> list[ExchangeRateRecord]:
        stmt = (
            select(ExchangeRateModel)
            .where(*self._pair_conditions(from_currency, to_currency))
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return [_row_to_rate(row) for row in result.scalars().all()]

    async def list_current(
        self, as_of: datetime, from_currency: str | None = None, to_currency: str | None = None
    ) -> list[ExchangeRateRecord]:
        """Approved rate in force at as_of for each stored direction."""
        as_of = ensure_utc(as_of)
        stmt = select(ExchangeRateModel).where(
            *self._pair_conditions(from_currency, to_currency),
            ExchangeRateModel.approved.is_(True),
            ExchangeRateModel.effective_from <= as_of,
            or_(
                ExchangeRateModel.effective_to.is_(None),
                ExchangeRateModel.effective_to > as_of,
            ),
        )
        result = await self.session.execute(stmt)
        return current_rates((_row_to_rate(row) for row in result.scalars().all()), as_of)

    async def list_history(
        self,
        from_currency: str | None = None,
        to_currency: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[ExchangeRateRecord]:
        """Every stored rate, newest effective_from first."""
        if page < 1 or size < 1:
            raise ValidationError("page and size must be positive")
        conditions = self._pair_conditions(from_currency, to_currency)

        total = await self.session.scalar(
            select(func.count()).select_from(ExchangeRateModel).where(*conditions)
        )
        stmt = (
            select(ExchangeRateModel)
            .where(*conditions)
            .order_by(
                ExchangeRateModel.effective_from.desc(),
                ExchangeRateModel.from_currency,
                ExchangeRateModel.to_currency,
            )
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.session.execute(stmt)
        return Page(
            items=[_row_to_rate(row) for row in result.scalars().all()],
            total=total or 0,
            page=page,
            size=size,
        )

    async def create_rate(self, record: ExchangeRateRecord) -> ExchangeRateRecord:
        """Insert one rate, closing the approved rate it takes over from.

        Raises:
            ConflictError: An approved rate for the pair already starts then
        """
        existing = await self._pair_records(record.from_currency, record.to_currency)
        record, covering = plan_new_rate(existing, record)

        if covering is not None:
            await self.session.execute(
                update(ExchangeRateModel)
                .where(ExchangeRateModel.id == covering.id)
                .values(effective_to=record.effective_from)
            )
        await self.add_rates([record])

        logger.info(
            f"Added {record.from_currency}->{record.to_currency} rate {record.rate} "
            f"from {record.effective_from.isoformat()}"
            + (f" (closes {covering.id})" if covering else "")
        )
        return record

    async def update_rate(self, rate_id: UUID, patch: dict[str, Any]) -> ExchangeRateRecord:
        """Patch a stored rate.

        Raises:
            NotFoundError: No rate with rate_id
            ValidationError: Unknown field or invalid result
            ConflictError: The new window overlaps another approved rate
        """
        row = await self.session.get(ExchangeRateModel, rate_id)
        if row is None:
            raise NotFoundError(f"Exchange rate {rate_id} not found")

        updated = apply_rate_patch(_row_to_rate(row), patch)
        check_no_overlap(await self._pair_records(row.from_currency, row.to_currency), updated)

        for field in patch:
            setattr(row, field, getattr(updated, field))
        await self.session.flush()

        logger.info(f"Updated exchange rate {rate_id}: {sorted(patch)}")
        return updated

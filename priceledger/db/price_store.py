"""SQLAlchemy implementation of the PriceStore contract.

Every write is flushed immediately so that ordering constraints (stamp the
superseded record before inserting its successor) reach the database in the
order the service issues them. Transactions are owned by the caller's
session (see priceledger.db.connection.get_session).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from priceledger.core.clock import ensure_utc
from priceledger.db.models import NO_ORGANIZATION, PriceChangeLogModel, PriceRecordModel
from priceledger.exceptions import ConflictError, NotFoundError
from priceledger.models import (
    ChangeLogEntry,
    ChangeLogFilters,
    ChangeType,
    PriceRecord,
    PriceTier,
    SubjectKey,
)
from priceledger.versioning.store import PATCHABLE_FIELDS

logger = logging.getLogger(__name__)


def _org_column(subject: SubjectKey) -> str:
    return subject.organization_id or NO_ORGANIZATION


def _subject_from_row(product_id: str, organization_id: str) -> SubjectKey:
    return SubjectKey(product_id=product_id, organization_id=organization_id or None)


def _dump_amounts(amounts: dict[str, Decimal | None]) -> dict[str, str | None]:
    return {code: str(amount) if amount is not None else None for code, amount in amounts.items()}


def _load_amounts(raw: dict[str, Any]) -> dict[str, Decimal | None]:
    return {code: Decimal(str(amount)) if amount is not None else None for code, amount in raw.items()}


def _opt_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def _row_to_price_record(row: PriceRecordModel) -> PriceRecord:
    """Convert database row to domain model."""
    return PriceRecord(
        id=row.id,
        subject=_subject_from_row(row.product_id, row.organization_id),
        tier=PriceTier(row.tier),
        amounts=_load_amounts(row.amounts),
        exchange_rate=row.exchange_rate,
        effective_from=ensure_utc(row.effective_from),
        effective_to=_opt_utc(row.effective_to),
        source=row.source,
        change_reason=row.change_reason,
        changed_by=row.changed_by,
        created_at=ensure_utc(row.created_at),
        supersedes_id=row.supersedes_id,
    )


def _row_to_change_log_entry(row: PriceChangeLogModel) -> ChangeLogEntry:
    return ChangeLogEntry(
        id=row.id,
        subject=_subject_from_row(row.product_id, row.organization_id),
        price_id=row.price_id,
        tier=PriceTier(row.tier),
        currency=row.currency,
        change_type=ChangeType(row.change_type),
        old_amount=row.old_amount,
        new_amount=row.new_amount,
        delta=row.delta,
        delta_percentage=row.delta_percentage,
        old_effective_from=_opt_utc(row.old_effective_from),
        new_effective_from=_opt_utc(row.new_effective_from),
        old_effective_to=_opt_utc(row.old_effective_to),
        new_effective_to=_opt_utc(row.new_effective_to),
        change_reason=row.change_reason,
        changed_by=row.changed_by,
        changed_at=ensure_utc(row.changed_at),
    )


class SqlPriceStore:
    """PriceStore backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _key_filter(self, subject: SubjectKey, tier: PriceTier):
        return and_(
            PriceRecordModel.product_id == subject.product_id,
            PriceRecordModel.organization_id == _org_column(subject),
            PriceRecordModel.tier == PriceTier(tier).value,
        )

    @asynccontextmanager
    async def lock(self, subject: SubjectKey, tier: PriceTier) -> AsyncIterator[None]:
        """Row-lock the key's open records for the rest of the transaction.

        SQLite ignores FOR UPDATE; its single-writer lock plus the partial
        unique index give the same single-pending guarantee.
        """
        stmt = (
            select(PriceRecordModel.id)
            .where(self._key_filter(subject, tier), PriceRecordModel.effective_to.is_(None))
            .with_for_update()
        )
        await self.session.execute(stmt)
        yield

    async def list_current_and_pending(
        self, subject: SubjectKey, tier: PriceTier, now: datetime
    ) -> list[PriceRecord]:
        stmt = (
            select(PriceRecordModel)
            .where(
                self._key_filter(subject, tier),
                or_(
                    PriceRecordModel.effective_to.is_(None),
                    PriceRecordModel.effective_to > now,
                ),
            )
            .order_by(PriceRecordModel.effective_from)
        )
        result = await self.session.execute(stmt)
        return [_row_to_price_record(row) for row in result.scalars().all()]

    async def list_history(
        self, subject: SubjectKey, tier: PriceTier | None = None
    ) -> list[PriceRecord]:
        stmt = select(PriceRecordModel).where(
            PriceRecordModel.product_id == subject.product_id,
            PriceRecordModel.organization_id == _org_column(subject),
        )
        if tier is not None:
            stmt = stmt.where(PriceRecordModel.tier == PriceTier(tier).value)
        stmt = stmt.order_by(PriceRecordModel.effective_from.desc())

        result = await self.session.execute(stmt)
        return [_row_to_price_record(row) for row in result.scalars().all()]

    async def get(self, price_id: UUID) -> PriceRecord | None:
        row = await self.session.get(PriceRecordModel, price_id)
        return _row_to_price_record(row) if row is not None else None

    async def insert(self, record: PriceRecord) -> PriceRecord:
        row = PriceRecordModel(
            id=record.id,
            product_id=record.subject.product_id,
            organization_id=_org_column(record.subject),
            tier=record.tier.value,
            amounts=_dump_amounts(record.amounts),
            exchange_rate=record.exchange_rate,
            effective_from=record.effective_from,
            effective_to=record.effective_to,
            source=record.source,
            change_reason=record.change_reason,
            changed_by=record.changed_by,
            created_at=record.created_at,
            supersedes_id=record.supersedes_id,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"An open-ended {record.tier.value} price already exists for {record.subject}"
            ) from e
        logger.debug(f"Inserted price record {record.id} for {record.subject} [{record.tier.value}]")
        return _row_to_price_record(row)

    async def _require(self, price_id: UUID) -> PriceRecordModel:
        row = await self.session.get(PriceRecordModel, price_id)
        if row is None:
            raise NotFoundError(f"Price record {price_id} not found")
        return row

    async def update_pending_by_id(self, price_id: UUID, patch: dict[str, Any]) -> PriceRecord:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch fields: {sorted(unknown)}")

        row = await self._require(price_id)
        for field, value in patch.items():
            setattr(row, field, _dump_amounts(value) if field == "amounts" else value)
        await self.session.flush()
        return _row_to_price_record(row)

    async def stamp_effective_to(
        self, price_id: UUID, effective_to: datetime | None
    ) -> PriceRecord:
        row = await self._require(price_id)
        row.effective_to = effective_to
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Cannot re-open price {price_id}: another record is open") from e
        return _row_to_price_record(row)

    async def delete_pending_by_id(self, price_id: UUID) -> None:
        row = await self._require(price_id)
        await self.session.delete(row)
        await self.session.flush()

    async def list_pending_between(
        self, start: datetime, end: datetime, product_id: str | None = None
    ) -> list[PriceRecord]:
        stmt = select(PriceRecordModel).where(
            PriceRecordModel.effective_to.is_(None),
            PriceRecordModel.effective_from > start,
            PriceRecordModel.effective_from <= end,
        )
        if product_id is not None:
            stmt = stmt.where(PriceRecordModel.product_id == product_id)
        stmt = stmt.order_by(PriceRecordModel.effective_from)

        result = await self.session.execute(stmt)
        return [_row_to_price_record(row) for row in result.scalars().all()]

    async def append_change_log(self, entry: ChangeLogEntry) -> None:
        next_seq = await self.session.scalar(
            select(func.coalesce(func.max(PriceChangeLogModel.seq), 0) + 1)
        )
        self.session.add(
            PriceChangeLogModel(
                id=entry.id,
                product_id=entry.subject.product_id,
                organization_id=_org_column(entry.subject),
                price_id=entry.price_id,
                tier=entry.tier.value,
                currency=entry.currency,
                change_type=entry.change_type.value,
                old_amount=entry.old_amount,
                new_amount=entry.new_amount,
                delta=entry.delta,
                delta_percentage=entry.delta_percentage,
                old_effective_from=entry.old_effective_from,
                new_effective_from=entry.new_effective_from,
                old_effective_to=entry.old_effective_to,
                new_effective_to=entry.new_effective_to,
                change_reason=entry.change_reason,
                changed_by=entry.changed_by,
                changed_at=entry.changed_at,
                seq=next_seq,
            )
        )
        await self.session.flush()

    async def list_change_log(
        self,
        subject: SubjectKey | None,
        filters: ChangeLogFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[ChangeLogEntry], int]:
        conditions = []
        if subject is not None:
            conditions.append(PriceChangeLogModel.product_id == subject.product_id)
            conditions.append(PriceChangeLogModel.organization_id == _org_column(subject))
        if filters.tier is not None:
            conditions.append(PriceChangeLogModel.tier == filters.tier.value)
        if filters.currency is not None:
            conditions.append(PriceChangeLogModel.currency == filters.currency.upper())
        if filters.change_type is not None:
            conditions.append(PriceChangeLogModel.change_type == filters.change_type.value)
        if filters.price_id is not None:
            conditions.append(PriceChangeLogModel.price_id == filters.price_id)
        if filters.start_date is not None:
            conditions.append(PriceChangeLogModel.changed_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(PriceChangeLogModel.changed_at < filters.end_date)

        total = await self.session.scalar(
            select(func.count()).select_from(PriceChangeLogModel).where(*conditions)
        )

        stmt = (
            select(PriceChangeLogModel)
            .where(*conditions)
            .order_by(PriceChangeLogModel.changed_at.desc(), PriceChangeLogModel.seq)
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_row_to_change_log_entry(row) for row in result.scalars().all()], total or 0

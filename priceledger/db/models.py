"""SQLAlchemy async database models for priceledger.

Versioned prices use half-open validity windows [effective_from,
effective_to). A partial unique index allows only one open-ended record
per (product, organization, tier).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# organization_id is stored as "" when a price is not organization-scoped,
# so the unique index treats "no organization" as one key.
NO_ORGANIZATION = ""


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PriceRecordModel(Base):
    """One effective-dated price version for a (product, organization, tier)."""

    __tablename__ = "price_records"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Business key
    product_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        Text, nullable=False, default=NO_ORGANIZATION, index=True
    )
    tier: Mapped[str] = mapped_column(String(16), nullable=False)

    # Currency code -> decimal string (or null)
    amounts: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6))

    # Validity window
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Provenance
    source: Mapped[str | None] = mapped_column(Text)
    change_reason: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    supersedes_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))

    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="check_price_effective_period",
        ),
        # Single pending (or single open active) record per key
        Index(
            "idx_price_open_unique",
            "product_id",
            "organization_id",
            "tier",
            unique=True,
            postgresql_where=text("effective_to IS NULL"),
            sqlite_where=text("effective_to IS NULL"),
        ),
        # As-of lookups
        Index(
            "idx_price_temporal",
            "product_id",
            "organization_id",
            "tier",
            "effective_from",
            "effective_to",
        ),
    )


class PriceChangeLogModel(Base):
    """Append-only audit entry for one (tier, currency) change."""

    __tablename__ = "price_change_logs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    product_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        Text, nullable=False, default=NO_ORGANIZATION, index=True
    )
    price_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), index=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    change_type: Mapped[str] = mapped_column(String(16), nullable=False)

    old_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    new_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    delta: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    delta_percentage: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))

    old_effective_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    new_effective_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    old_effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    new_effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    change_reason: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Ordering tiebreak for entries sharing changed_at
    seq: Mapped[int] = mapped_column(nullable=False, default=0)

    __table_args__ = (
        Index("idx_change_log_timeline", "product_id", "organization_id", "changed_at"),
    )


class ExchangeRateModel(Base):
    """Effective-dated rate: 1 from_currency = rate to_currency."""

    __tablename__ = "exchange_rates"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    source: Mapped[str | None] = mapped_column(Text)
    change_reason: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("rate > 0", name="check_rate_positive"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="check_rate_effective_period",
        ),
        Index("idx_rate_pair", "from_currency", "to_currency", "effective_from"),
    )

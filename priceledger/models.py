"""priceledger Pydantic models for type-safe data validation.

All instants are aware UTC datetimes. Record state (pending, active, ...) is
always derived from field values and the clock, never stored.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from priceledger.core.clock import ensure_utc

CNY = "CNY"
IDR = "IDR"
USD = "USD"
EUR = "EUR"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceTier(str, Enum):
    """Price categories kept per product."""

    COST = "cost"
    CHANNEL = "channel"
    DIRECT = "direct"
    LIST = "list"


class LinkageMode(str, Enum):
    """Which currency field drives the other during editing."""

    NONE = "none"
    PRIMARY_IS_CNY = "primary_is_cny"
    PRIMARY_IS_IDR = "primary_is_idr"


class ChangeType(str, Enum):
    """Kind of mutation captured by a change log entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


class PriceState(str, Enum):
    """Lifecycle label derived from effective bounds and the clock."""

    PENDING = "pending"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


class SubjectKey(BaseModel):
    """What a price belongs to: a product, optionally scoped to an organization."""

    product_id: str
    organization_id: str | None = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {"product_id": "ecs-g7-2xlarge", "organization_id": None}
        }

    def __str__(self) -> str:
        if self.organization_id:
            return f"{self.product_id}@{self.organization_id}"
        return self.product_id


class PriceRecord(BaseModel):
    """One versioned price fact for a (subject, tier)."""

    id: UUID = Field(default_factory=uuid4)
    subject: SubjectKey
    tier: PriceTier

    # Currency code -> amount; at least one non-null
    amounts: dict[str, Decimal | None]
    exchange_rate: Decimal | None = None  # Quote units (IDR) per 1 base unit (CNY)

    # Validity window [effective_from, effective_to)
    effective_from: datetime
    effective_to: datetime | None = None  # None = open-ended

    # Provenance
    source: str | None = None
    change_reason: str | None = None
    changed_by: str = "system"
    created_at: datetime = Field(default_factory=_utcnow)
    supersedes_id: UUID | None = None  # Record whose effective_to we stamped

    @field_validator("effective_from", "effective_to", "created_at")
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @field_validator("amounts")
    @classmethod
    def validate_amounts(cls, v: dict[str, Decimal | None]) -> dict[str, Decimal | None]:
        if not any(amount is not None for amount in v.values()):
            raise ValueError("amounts must contain at least one non-null value")
        if any(amount is not None and amount < 0 for amount in v.values()):
            raise ValueError("amounts must be non-negative")
        return {code.upper(): amount for code, amount in v.items()}

    @model_validator(mode="after")
    def validate_window(self) -> PriceRecord:
        if self.effective_to is not None and self.effective_from >= self.effective_to:
            raise ValueError("effective_from must be earlier than effective_to")
        return self

    def has_started(self, instant: datetime) -> bool:
        return self.effective_from <= instant

    def covers(self, instant: datetime) -> bool:
        """Check if instant lies within [effective_from, effective_to)."""
        return self.effective_from <= instant and (
            self.effective_to is None or instant < self.effective_to
        )

    def is_pending(self, instant: datetime) -> bool:
        return self.effective_from > instant and self.effective_to is None

    def non_null_amounts(self) -> dict[str, Decimal]:
        return {code: amount for code, amount in self.amounts.items() if amount is not None}

    class Config:
        json_schema_extra = {
            "example": {
                "subject": {"product_id": "P1", "organization_id": None},
                "tier": "channel",
                "amounts": {"CNY": "120.00", "IDR": "1848000"},
                "exchange_rate": "15400",
                "effective_from": "2024-05-31T17:00:00Z",
                "effective_to": None,
                "change_reason": "Q2 list price review",
                "changed_by": "pricing@example.com",
            }
        }


class LegacyPrice(BaseModel):
    """Flat price kept on the parent entity for subjects without history."""

    amounts: dict[str, Decimal | None]
    exchange_rate: Decimal | None = None


class ResolvedPrice(BaseModel):
    """What is in effect at an instant and what is scheduled after it."""

    as_of: datetime
    current: PriceRecord | None = None
    pending: PriceRecord | None = None


class ChangeLogEntry(BaseModel):
    """Immutable audit entry for one (tier, currency) change."""

    id: UUID = Field(default_factory=uuid4)
    subject: SubjectKey
    price_id: UUID | None = None
    tier: PriceTier
    currency: str
    change_type: ChangeType

    old_amount: Decimal | None = None
    new_amount: Decimal | None = None
    delta: Decimal | None = None
    delta_percentage: Decimal | None = None

    old_effective_from: datetime | None = None
    new_effective_from: datetime | None = None
    old_effective_to: datetime | None = None
    new_effective_to: datetime | None = None

    change_reason: str | None = None
    changed_by: str = "system"
    changed_at: datetime = Field(default_factory=_utcnow)

    @field_validator(
        "old_effective_from",
        "new_effective_from",
        "old_effective_to",
        "new_effective_to",
        "changed_at",
    )
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    class Config:
        frozen = True


class ChangeLogFilters(BaseModel):
    """Optional filters for audit retrieval."""

    tier: PriceTier | None = None
    currency: str | None = None
    change_type: ChangeType | None = None
    price_id: UUID | None = None
    start_date: datetime | None = None  # Inclusive, on changed_at
    end_date: datetime | None = None  # Exclusive, on changed_at

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    def matches(self, entry: ChangeLogEntry) -> bool:
        if self.tier is not None and entry.tier != self.tier:
            return False
        if self.currency is not None and entry.currency != self.currency.upper():
            return False
        if self.change_type is not None and entry.change_type != self.change_type:
            return False
        if self.price_id is not None and entry.price_id != self.price_id:
            return False
        if self.start_date is not None and entry.changed_at < self.start_date:
            return False
        if self.end_date is not None and entry.changed_at >= self.end_date:
            return False
        return True


class ExchangeRateRecord(BaseModel):
    """Effective-dated conversion rate: 1 from_currency = rate to_currency."""

    id: UUID = Field(default_factory=uuid4)
    from_currency: str
    to_currency: str
    rate: Decimal
    effective_from: datetime
    effective_to: datetime | None = None
    approved: bool = True
    source: str | None = None
    change_reason: str | None = None
    changed_by: str = "system"

    @field_validator("effective_from", "effective_to")
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @field_validator("from_currency", "to_currency")
    @classmethod
    def validate_code(cls, v: str) -> str:
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"currency code must be 3 letters, got {v!r}")
        return v.upper()

    @field_validator("rate")
    @classmethod
    def validate_rate(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("rate must be positive")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> ExchangeRateRecord:
        if self.effective_to is not None and self.effective_from >= self.effective_to:
            raise ValueError("effective_from must be earlier than effective_to")
        return self

    def covers(self, instant: datetime) -> bool:
        return self.effective_from <= instant and (
            self.effective_to is None or instant < self.effective_to
        )

    class Config:
        json_schema_extra = {
            "example": {
                "from_currency": "CNY",
                "to_currency": "IDR",
                "rate": "2200",
                "effective_from": "2024-01-01T00:00:00Z",
                "approved": True,
            }
        }


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of an ordered result set."""

    items: list[T]
    total: int
    page: int
    size: int

    @computed_field
    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0

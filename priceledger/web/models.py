"""Request/response models for the priceledger JSON API.

Instants go over the wire as ISO-8601 UTC. Effective dates entered by users
travel as business-local ``YYYY-MM-DDTHH:mm`` text and are echoed back the
same way in the ``*_local`` fields.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from priceledger.core.business_time import format_local
from priceledger.models import LinkageMode, PriceRecord, PriceState, ResolvedPrice


# ============================================================================
# Price Models
# ============================================================================


class PendingPriceRequest(BaseModel):
    """Body of PUT /api/prices/{product_id}/{tier}/pending."""

    amounts: dict[str, Decimal | None]
    exchange_rate: Decimal | None = None
    effective_from: str = Field(description="Business-local YYYY-MM-DDTHH:mm")
    reason: str | None = None
    linkage_mode: LinkageMode = LinkageMode.NONE
    organization_id: str | None = None
    changed_by: str = "system"
    source: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "amounts": {"CNY": "100.00"},
                "exchange_rate": "2200",
                "effective_from": "2024-06-01T00:00",
                "reason": "Q2 review",
                "linkage_mode": "primary_is_cny",
            }
        }


class PriceRecordResponse(BaseModel):
    id: UUID
    product_id: str
    organization_id: str | None
    tier: str
    amounts: dict[str, Decimal | None]
    exchange_rate: Decimal | None
    effective_from: datetime
    effective_to: datetime | None
    effective_from_local: str
    effective_to_local: str | None
    state: PriceState | None = None
    source: str | None
    change_reason: str | None
    changed_by: str
    created_at: datetime

    @classmethod
    def from_record(
        cls,
        record: PriceRecord,
        offset_hours: int,
        state: PriceState | None = None,
    ) -> PriceRecordResponse:
        return cls(
            id=record.id,
            product_id=record.subject.product_id,
            organization_id=record.subject.organization_id,
            tier=record.tier.value,
            amounts=record.amounts,
            exchange_rate=record.exchange_rate,
            effective_from=record.effective_from,
            effective_to=record.effective_to,
            effective_from_local=format_local(record.effective_from, offset_hours),
            effective_to_local=(
                format_local(record.effective_to, offset_hours) if record.effective_to else None
            ),
            state=state,
            source=record.source,
            change_reason=record.change_reason,
            changed_by=record.changed_by,
            created_at=record.created_at,
        )


class ResolvedPriceResponse(BaseModel):
    as_of: datetime
    current: PriceRecordResponse | None
    pending: PriceRecordResponse | None

    @classmethod
    def from_resolved(cls, resolved: ResolvedPrice, offset_hours: int) -> ResolvedPriceResponse:
        return cls(
            as_of=resolved.as_of,
            current=(
                PriceRecordResponse.from_record(resolved.current, offset_hours, PriceState.ACTIVE)
                if resolved.current
                else None
            ),
            pending=(
                PriceRecordResponse.from_record(resolved.pending, offset_hours, PriceState.PENDING)
                if resolved.pending
                else None
            ),
        )


# ============================================================================
# Exchange Rate Models
# ============================================================================


class ConvertResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    converted: Decimal
    rate: Decimal
    as_of: datetime


class LinkResponse(BaseModel):
    primary_currency: str
    primary_amount: Decimal | None
    exchange_rate: Decimal
    linkage_mode: LinkageMode
    linked_currency: str | None
    linked_amount: Decimal | None


# ============================================================================
# Exchange Rate Models
# ============================================================================


class CreateExchangeRateRequest(BaseModel):
    """Body of POST /api/exchange-rates."""

    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)
    effective_from: datetime | None = None  # Defaults to now
    effective_to: datetime | None = None
    approved: bool = True
    source: str | None = None
    change_reason: str | None = None
    changed_by: str = "system"

    class Config:
        json_schema_extra = {
            "example": {
                "from_currency": "CNY",
                "to_currency": "IDR",
                "rate": "2250",
                "effective_from": "2024-07-01T00:00:00Z",
                "source": "bank-indonesia",
                "change_reason": "July fixing",
            }
        }


class UpdateExchangeRateRequest(BaseModel):
    """Body of PUT /api/exchange-rates/{rate_id}; omitted fields are kept."""

    rate: Decimal | None = Field(default=None, gt=0)
    effective_from: datetime | None = None
    effective_to: datetime | None = None
    approved: bool | None = None
    change_reason: str | None = None
    changed_by: str | None = None

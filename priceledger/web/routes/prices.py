"""Versioned price routes.

Routes:
- GET    /api/prices/upcoming                              - Pending prices due soon
- GET    /api/prices/{product_id}/history                  - Every version, newest first
- GET    /api/prices/{product_id}/{tier}/resolve           - Current + pending at an instant
- PUT    /api/prices/{product_id}/{tier}/pending           - Schedule or edit the pending price
- DELETE /api/prices/{product_id}/{tier}/pending/{price_id} - Withdraw the pending price
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from priceledger.config import PricingConfig
from priceledger.models import PriceTier, SubjectKey
from priceledger.versioning import resolver
from priceledger.versioning.mutation import PriceMutationService
from priceledger.web.dependencies import get_price_service, get_pricing_config
from priceledger.web.models import (
    PendingPriceRequest,
    PriceRecordResponse,
    ResolvedPriceResponse,
)

router = APIRouter(prefix="/api/prices", tags=["prices"])


@router.get("/upcoming", response_model=list[PriceRecordResponse])
async def upcoming_prices(
    hours_ahead: int | None = Query(default=None, ge=0),
    product_id: str | None = Query(default=None),
    service: PriceMutationService = Depends(get_price_service),
    pricing: PricingConfig = Depends(get_pricing_config),
):
    """Pending prices taking effect within the next hours_ahead hours."""
    records = await service.list_upcoming(hours_ahead=hours_ahead, product_id=product_id)
    return [
        PriceRecordResponse.from_record(r, pricing.business_utc_offset_hours)
        for r in records
    ]


@router.get("/{product_id}/history", response_model=list[PriceRecordResponse])
async def price_history(
    product_id: str,
    tier: PriceTier | None = Query(default=None),
    organization_id: str | None = Query(default=None),
    service: PriceMutationService = Depends(get_price_service),
    pricing: PricingConfig = Depends(get_pricing_config),
):
    """All versions for a product, newest effective_from first, with derived state."""
    subject = SubjectKey(product_id=product_id, organization_id=organization_id)
    records = await service.list_history(subject, tier)
    now = service.clock.now()

    return [
        PriceRecordResponse.from_record(
            r,
            pricing.business_utc_offset_hours,
            resolver.price_state(r, now, [o for o in records if o.tier == r.tier]),
        )
        for r in records
    ]


@router.get("/{product_id}/{tier}/resolve", response_model=ResolvedPriceResponse)
async def resolve_price(
    product_id: str,
    tier: PriceTier,
    as_of: datetime | None = Query(default=None, description="ISO-8601 instant, default now"),
    organization_id: str | None = Query(default=None),
    service: PriceMutationService = Depends(get_price_service),
    pricing: PricingConfig = Depends(get_pricing_config),
):
    subject = SubjectKey(product_id=product_id, organization_id=organization_id)
    resolved = await service.resolve_at(subject, tier, as_of)
    return ResolvedPriceResponse.from_resolved(resolved, pricing.business_utc_offset_hours)


@router.put("/{product_id}/{tier}/pending", response_model=PriceRecordResponse)
async def put_pending_price(
    product_id: str,
    tier: PriceTier,
    body: PendingPriceRequest,
    service: PriceMutationService = Depends(get_price_service),
    pricing: PricingConfig = Depends(get_pricing_config),
):
    """Create the pending price, or replace the one already scheduled.

    409 when effective_from is not far enough in the future.
    """
    subject = SubjectKey(product_id=product_id, organization_id=body.organization_id)
    record = await service.create_or_update_pending(
        subject,
        tier,
        body.amounts,
        body.exchange_rate,
        body.effective_from,
        body.reason,
        linkage_mode=body.linkage_mode,
        changed_by=body.changed_by,
        source=body.source,
    )
    return PriceRecordResponse.from_record(
        record, pricing.business_utc_offset_hours, resolver.price_state(record, service.clock.now())
    )


@router.delete("/{product_id}/{tier}/pending/{price_id}", status_code=204)
async def delete_pending_price(
    product_id: str,
    tier: PriceTier,
    price_id: UUID,
    organization_id: str | None = Query(default=None),
    changed_by: str = Query(default="system"),
    reason: str | None = Query(default=None),
    service: PriceMutationService = Depends(get_price_service),
):
    """Withdraw a pending price. 409 once it has become effective."""
    subject = SubjectKey(product_id=product_id, organization_id=organization_id)
    await service.delete_pending(subject, tier, price_id, changed_by=changed_by, reason=reason)
    return Response(status_code=204)

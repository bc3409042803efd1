"""Price change log routes.

Routes:
- GET /api/price-change-logs - Paginated audit entries, newest first
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from priceledger.models import ChangeLogEntry, ChangeLogFilters, ChangeType, Page, PriceTier, SubjectKey
from priceledger.versioning.mutation import PriceMutationService
from priceledger.web.dependencies import get_price_service

router = APIRouter(prefix="/api", tags=["change-logs"])


@router.get("/price-change-logs", response_model=Page[ChangeLogEntry])
async def list_price_change_logs(
    product_id: str | None = Query(default=None),
    organization_id: str | None = Query(default=None),
    tier: PriceTier | None = Query(default=None),
    currency: str | None = Query(default=None, min_length=3, max_length=3),
    change_type: ChangeType | None = Query(default=None),
    price_id: UUID | None = Query(default=None),
    start_date: datetime | None = Query(default=None, description="Inclusive"),
    end_date: datetime | None = Query(default=None, description="Exclusive"),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=200),
    service: PriceMutationService = Depends(get_price_service),
):
    """Audit entries filtered by subject and the usual change-log filters.

    Without product_id the whole log is searched.
    """
    subject = (
        SubjectKey(product_id=product_id, organization_id=organization_id)
        if product_id
        else None
    )
    filters = ChangeLogFilters(
        tier=tier,
        currency=currency,
        change_type=change_type,
        price_id=price_id,
        start_date=start_date,
        end_date=end_date,
    )
    return await service.list_change_log(subject, filters, page, size)

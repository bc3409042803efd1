"""Exchange rate routes.

Routes:
- GET  /api/exchange-rates            - Rates in force now (or at as_of)
- GET  /api/exchange-rates/history    - Every stored rate, paginated
- POST /api/exchange-rates            - Add a rate
- PUT  /api/exchange-rates/{rate_id}  - Edit a rate
- GET  /api/exchange-rates/convert    - Convert an amount at an instant
- GET  /api/exchange-rates/link       - Derive the linked CNY/IDR amount
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError

from priceledger.currency.linkage import compute_linked_amount, linked_currency
from priceledger.currency.rounding import normalize_currency
from priceledger.exceptions import ValidationError
from priceledger.models import ExchangeRateRecord, LinkageMode, Page
from priceledger.rates.provider import ExchangeRateBook, ExchangeRateProvider
from priceledger.web.dependencies import get_rate_provider
from priceledger.web.models import (
    ConvertResponse,
    CreateExchangeRateRequest,
    LinkResponse,
    UpdateExchangeRateRequest,
)

router = APIRouter(prefix="/api/exchange-rates", tags=["exchange-rates"])


@router.get("/convert", response_model=ConvertResponse)
async def convert_amount(
    amount: Decimal = Query(...),
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query(..., alias="to"),
    as_of: datetime | None = Query(default=None),
    provider: ExchangeRateProvider = Depends(get_rate_provider),
):
    """Convert amount; 404 when no approved rate covers as_of."""
    as_of = as_of or datetime.now(timezone.utc)
    from_code = normalize_currency(from_currency)
    to_code = normalize_currency(to_currency)

    rate = await provider.get_rate(from_code, to_code, as_of)
    converted = await provider.convert(amount, from_code, to_code, as_of)
    return ConvertResponse(
        amount=amount,
        from_currency=from_code,
        to_currency=to_code,
        converted=converted,
        rate=rate,
        as_of=as_of,
    )


@router.get("/link", response_model=LinkResponse)
async def link_amount(
    currency: str = Query(..., description="Currency of the edited field"),
    exchange_rate: Decimal = Query(...),
    linkage_mode: LinkageMode = Query(default=LinkageMode.PRIMARY_IS_CNY),
    amount: Decimal | None = Query(default=None),
):
    """Preview the linked amount the editor would derive. Pure; no lookups."""
    if exchange_rate <= 0:
        raise ValidationError("exchange_rate must be greater than 0")
    code = normalize_currency(currency)
    linked = compute_linked_amount(code, amount, exchange_rate, linkage_mode)
    return LinkResponse(
        primary_currency=code,
        primary_amount=amount,
        exchange_rate=exchange_rate,
        linkage_mode=linkage_mode,
        linked_currency=linked_currency(code),
        linked_amount=linked,
    )


@router.get("", response_model=list[ExchangeRateRecord])
async def list_current_rates(
    from_currency: str | None = Query(default=None, min_length=3, max_length=3),
    to_currency: str | None = Query(default=None, min_length=3, max_length=3),
    as_of: datetime | None = Query(default=None),
    book: ExchangeRateBook = Depends(get_rate_provider),
):
    """Approved rate in force for each stored direction."""
    return await book.list_current(as_of or datetime.now(timezone.utc), from_currency, to_currency)


@router.get("/history", response_model=Page[ExchangeRateRecord])
async def list_rate_history(
    from_currency: str | None = Query(default=None, min_length=3, max_length=3),
    to_currency: str | None = Query(default=None, min_length=3, max_length=3),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=200),
    book: ExchangeRateBook = Depends(get_rate_provider),
):
    return await book.list_history(from_currency, to_currency, page, size)


@router.post("", response_model=ExchangeRateRecord, status_code=status.HTTP_201_CREATED)
async def create_rate(
    body: CreateExchangeRateRequest,
    book: ExchangeRateBook = Depends(get_rate_provider),
):
    """Add a rate; an approved one closes the rate it takes over from. 409 on a duplicate start."""
    try:
        record = ExchangeRateRecord(
            from_currency=normalize_currency(body.from_currency),
            to_currency=normalize_currency(body.to_currency),
            rate=body.rate,
            effective_from=body.effective_from or datetime.now(timezone.utc),
            effective_to=body.effective_to,
            approved=body.approved,
            source=body.source,
            change_reason=body.change_reason,
            changed_by=body.changed_by,
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid exchange rate: {e.errors()[0]['msg']}") from e
    if record.from_currency == record.to_currency:
        raise ValidationError("from_currency and to_currency must differ")
    return await book.create_rate(record)


@router.put("/{rate_id}", response_model=ExchangeRateRecord)
async def update_rate(
    rate_id: UUID,
    body: UpdateExchangeRateRequest,
    book: ExchangeRateBook = Depends(get_rate_provider),
):
    """Edit a stored rate. 404 if unknown, 409 if the new window overlaps."""
    patch = body.model_dump(exclude_unset=True)
    if not patch:
        raise ValidationError("No fields to update")
    return await book.update_rate(rate_id, patch)

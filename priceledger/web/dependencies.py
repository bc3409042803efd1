"""Shared dependencies for priceledger web routes.

Each request gets its own session; the service and rate provider built on
it are injected with FastAPI's Depends(). Tests swap them out through
``app.dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from priceledger.config import PricingConfig, get_config
from priceledger.db.connection import get_session
from priceledger.db.price_store import SqlPriceStore
from priceledger.rates.provider import ExchangeRateBook
from priceledger.rates.sql_provider import SqlExchangeRateProvider
from priceledger.versioning.cache import ResolutionCache
from priceledger.versioning.mutation import PriceMutationService

# Process-wide resolution memo (only when enabled in config)
_resolution_cache: ResolutionCache | None = None


def get_pricing_config() -> PricingConfig:
    return get_config().pricing


def get_resolution_cache() -> ResolutionCache | None:
    global _resolution_cache
    if not get_pricing_config().resolution_cache_enabled:
        return None
    if _resolution_cache is None:
        _resolution_cache = ResolutionCache()
    return _resolution_cache


async def get_price_service() -> AsyncIterator[PriceMutationService]:
    """PriceMutationService bound to a per-request transaction."""
    async with get_session() as session:
        yield PriceMutationService(
            SqlPriceStore(session),
            rate_provider=SqlExchangeRateProvider(session),
            config=get_pricing_config(),
            cache=get_resolution_cache(),
        )


async def get_rate_provider() -> AsyncIterator[ExchangeRateBook]:
    async with get_session() as session:
        yield SqlExchangeRateProvider(session)

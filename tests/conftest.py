"""Pytest configuration and fixtures for priceledger tests.

Provides common fixtures for testing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from priceledger.config import PricingConfig, reset_config
from priceledger.core.business_time import parse_local
from priceledger.core.clock import FixedClock
from priceledger.models import ExchangeRateRecord, PriceRecord, PriceTier, SubjectKey
from priceledger.rates.static import StaticRateProvider
from priceledger.versioning.mutation import PriceMutationService
from priceledger.versioning.store import InMemoryPriceStore

# 2024-05-20 10:00 business time (UTC+7)
NOW = datetime(2024, 5, 20, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def subject() -> SubjectKey:
    return SubjectKey(product_id="P1")


@pytest.fixture
def store() -> InMemoryPriceStore:
    return InMemoryPriceStore()


@pytest.fixture
def rate_provider() -> StaticRateProvider:
    """CNY->IDR 15400 from 2024-01-01, plus a USD->IDR pair."""
    return StaticRateProvider(
        [
            ExchangeRateRecord(
                from_currency="CNY",
                to_currency="IDR",
                rate=Decimal("15400"),
                effective_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
            ExchangeRateRecord(
                from_currency="USD",
                to_currency="IDR",
                rate=Decimal("15400"),
                effective_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
        ]
    )


@pytest.fixture
def pricing_config() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
def service(store, clock, rate_provider, pricing_config) -> PriceMutationService:
    return PriceMutationService(
        store, clock=clock, rate_provider=rate_provider, config=pricing_config
    )


@pytest.fixture
def active_record(subject) -> PriceRecord:
    """Channel price in effect since 2024-01-01 local: CNY 100 / IDR 1,540,000."""
    return PriceRecord(
        subject=subject,
        tier=PriceTier.CHANNEL,
        amounts={"CNY": Decimal("100.00"), "IDR": Decimal("1540000")},
        exchange_rate=Decimal("15400"),
        effective_from=parse_local("2024-01-01T00:00"),
        change_reason="Initial price",
        created_at=datetime(2023, 12, 20, tzinfo=timezone.utc),
    )


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    reset_config()
    yield
    reset_config()

"""Fixtures for API route tests.

The app is built with create_app() and its session-backed dependencies are
overridden with the in-memory service and static rate provider.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from priceledger.web.app import create_app
from priceledger.web.dependencies import get_price_service, get_pricing_config, get_rate_provider


@pytest.fixture
def app(service, rate_provider, pricing_config):
    """Create test FastAPI app with in-memory collaborators."""
    test_app = create_app()
    test_app.dependency_overrides[get_price_service] = lambda: service
    test_app.dependency_overrides[get_rate_provider] = lambda: rate_provider
    test_app.dependency_overrides[get_pricing_config] = lambda: pricing_config
    return test_app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def seeded(store, active_record):
    """Store holding the active channel price for P1."""
    asyncio.run(store.insert(active_record))
    return active_record

"""
Shared pytest fixtures.

Every test runs against a fresh in-memory SQLite database.
"""

from datetime import datetime

import pytest

from config import reload_settings
from db_engine import init_db, reset_engine
from services.currency import ConversionRate

TEST_RATE = 25000.0


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """Point settings at an in-memory database and create the schema."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("DEFAULT_USD_VND_RATE", "25400")
    reload_settings()
    reset_engine()
    init_db()
    yield
    reset_engine()


@pytest.fixture
def prices():
    """Mutable price table used by the price_lookup fixture."""
    return {"USDT": 1.0, "BTC": 50000.0, "ETH": 3500.0}


@pytest.fixture
def price_lookup(prices):
    return lambda symbol: prices.get(symbol)


@pytest.fixture
def rate_lookup():
    return lambda: ConversionRate(rate=TEST_RATE, source="Test", timestamp=datetime(2026, 1, 1))

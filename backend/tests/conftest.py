"""
Test configuration and shared fixtures for PropDesk backend tests.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from propdesk.core.config import TradingSettings
from propdesk.execution.models import OrderSide, OrderType
from propdesk.execution.service import TradingService
from propdesk.execution.validator import OrderRequest


D = Decimal


# =============================================================================
# Event Bus Mock
# =============================================================================

@pytest.fixture
def mock_event_bus():
    """Create a mock event bus for testing."""
    bus = AsyncMock()
    bus.publish = AsyncMock()
    bus.subscribe = AsyncMock()
    bus.unsubscribe = AsyncMock()
    bus.health_check = AsyncMock(return_value=True)
    bus.stream_name = MagicMock(return_value="pd:events:test")
    return bus


@pytest.fixture
def mock_journal():
    """Create a mock trade journal."""
    journal = AsyncMock()
    journal.write = AsyncMock()
    journal.database = MagicMock()
    journal.database.health_check = AsyncMock(return_value=True)
    return journal


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def trading_config():
    """Trading settings with the default execution constants."""
    return TradingSettings(
        margin_per_lot=D("1000"),
        slippage_pips=2,
        quote_max_age_seconds=0.0,
        symbols_file=None,
    )


@pytest.fixture
def service(trading_config, mock_event_bus, mock_journal):
    """Trading service with EURUSD, GBPUSD and USDJPY quotes loaded."""
    svc = TradingService(config=trading_config, event_bus=mock_event_bus, journal=mock_journal)
    svc.quotes.update("EURUSD", D("1.0850"), D("1.0852"))
    svc.quotes.update("GBPUSD", D("1.2650"), D("1.2652"))
    svc.quotes.update("USDJPY", D("149.50"), D("149.52"))
    return svc


@pytest.fixture
async def account(service):
    """Standard 25k challenge account."""
    result = await service.provision_account("user-1")
    return result.unwrap()


@pytest.fixture
async def small_account(service):
    """Account whose free margin (500) cannot cover one lot."""
    result = await service.provision_account("user-2", account_size=D("500"))
    return result.unwrap()


# =============================================================================
# Helpers
# =============================================================================

def market(symbol: str = "EURUSD", side: OrderSide = OrderSide.BUY, volume: str = "1.0", **kwargs) -> OrderRequest:
    """Build a market order request."""
    return OrderRequest(symbol=symbol, side=side, volume=D(volume), order_type=OrderType.MARKET, **kwargs)


async def tick(service: TradingService, symbol: str, bid: str, ask: str):
    """Push a quote through the service and return the result."""
    return await service.on_quote(symbol, D(bid), D(ask))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )

"""API dependencies and response helpers."""

from typing import Any, Dict

from propdesk.execution.service import TradingService, get_trading_service


def get_service() -> TradingService:
    """Get the trading service instance."""
    return get_trading_service()


def ok(data: Any) -> Dict[str, Any]:
    """Success envelope."""
    return {"success": True, "data": data}

"""API router initialization"""
from fastapi import APIRouter

from propdesk.api.routes import accounts, orders, positions, quotes, trades

api_router = APIRouter()

api_router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
api_router.include_router(orders.router, prefix="/accounts", tags=["orders"])
api_router.include_router(positions.router, prefix="/accounts", tags=["positions"])
api_router.include_router(trades.router, prefix="/accounts", tags=["trades"])
api_router.include_router(quotes.router, tags=["quotes"])

__all__ = ["api_router"]

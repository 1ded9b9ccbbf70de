"""
Trades API

Trade history and performance statistics. `/trades/history` and
`/trades/stats` read the live service; `/trades/journal` queries the
persisted journal.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from propdesk.api.deps import get_service, ok
from propdesk.core.config import settings
from propdesk.db.repository import TradeRepository
from propdesk.db.session import get_db
from propdesk.execution.service import TradingService
from propdesk.schemas.trading import (
    ApiResponse,
    JournalTradeResponse,
    TradeResponse,
    TradeStatsResponse,
)


router = APIRouter()


@router.get("/{account_id}/trades/history", response_model=ApiResponse[List[TradeResponse]])
async def get_trade_history(
    account_id: str,
    symbol: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: TradingService = Depends(get_service),
):
    """Closed trades, newest close first."""
    result = await service.get_trade_history(account_id, symbol, limit, offset)
    return ok([TradeResponse.model_validate(t) for t in result.unwrap()])


@router.get("/{account_id}/trades/stats", response_model=ApiResponse[TradeStatsResponse])
async def get_trade_stats(account_id: str, service: TradingService = Depends(get_service)):
    """Win rate, profit factor and averages over the account's trades."""
    result = await service.get_trade_stats(account_id)
    return ok(TradeStatsResponse.model_validate(result.unwrap()))


async def _journal_session():
    if not settings.db.enabled:
        raise HTTPException(status_code=503, detail="Trade journal is disabled")
    async for session in get_db():
        yield session


@router.get("/{account_id}/trades/journal", response_model=ApiResponse[List[JournalTradeResponse]])
async def get_journal_trades(
    account_id: str,
    symbol: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(_journal_session),
):
    repo = TradeRepository(db)
    trades = await repo.get_history(account_id, symbol=symbol, limit=limit, offset=offset)
    return ok([JournalTradeResponse.model_validate(t) for t in trades])

"""
Quotes API

Manual tick ingestion (feeds without an event bus, testing) and the
symbol list.
"""

from typing import List

from fastapi import APIRouter, Depends

from propdesk.api.deps import get_service, ok
from propdesk.execution.service import TradingService
from propdesk.schemas.trading import (
    ApiResponse,
    QuoteTick,
    QuoteTickResponse,
    SymbolResponse,
)


router = APIRouter()


@router.post("/quotes", response_model=ApiResponse[QuoteTickResponse])
async def push_quote(tick: QuoteTick, service: TradingService = Depends(get_service)):
    """
    Ingest a bid/ask tick.

    Marks open positions, runs SL/TP exits and pending-order triggers for
    every account holding or targeting the symbol.
    """
    result = await service.on_quote(tick.symbol, tick.bid, tick.ask, tick.timestamp)
    return ok(QuoteTickResponse(**result.unwrap()))


@router.get("/symbols", response_model=ApiResponse[List[SymbolResponse]])
async def list_symbols(service: TradingService = Depends(get_service)):
    return ok([SymbolResponse.model_validate(s) for s in service.symbols.all()])

"""Positions API endpoints"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from propdesk.api.deps import get_service, ok
from propdesk.execution.models import PositionStatus
from propdesk.execution.service import TradingService
from propdesk.schemas.trading import (
    ApiResponse,
    ClosePositionResponse,
    LiquidationResponse,
    PositionClose,
    PositionModify,
    PositionResponse,
    TradeResponse,
)


router = APIRouter()


@router.get("/{account_id}/positions", response_model=ApiResponse[List[PositionResponse]])
async def get_positions(
    account_id: str,
    status: Optional[PositionStatus] = Query(PositionStatus.OPEN, description="open or closed"),
    service: TradingService = Depends(get_service),
):
    """Positions with the given status (open by default), oldest first."""
    result = await service.get_positions(account_id, status)
    return ok([PositionResponse.model_validate(p) for p in result.unwrap()])


@router.post("/{account_id}/positions/close-all", response_model=ApiResponse[LiquidationResponse])
async def close_all_positions(account_id: str, service: TradingService = Depends(get_service)):
    """Close every open position at the current mark; unpriced positions are reported."""
    result = await service.close_all_positions(account_id)
    return ok(LiquidationResponse.model_validate(result.unwrap()))


@router.get("/{account_id}/positions/{position_id}", response_model=ApiResponse[PositionResponse])
async def get_position(account_id: str, position_id: str, service: TradingService = Depends(get_service)):
    result = await service.get_position(account_id, position_id)
    return ok(PositionResponse.model_validate(result.unwrap()))


@router.patch("/{account_id}/positions/{position_id}", response_model=ApiResponse[PositionResponse])
async def modify_position(
    account_id: str,
    position_id: str,
    request: PositionModify,
    service: TradingService = Depends(get_service),
):
    result = await service.modify_position(
        account_id, position_id, request.stop_loss, request.take_profit
    )
    return ok(PositionResponse.model_validate(result.unwrap()))


@router.post("/{account_id}/positions/{position_id}/close", response_model=ApiResponse[ClosePositionResponse])
async def close_position(
    account_id: str,
    position_id: str,
    request: Optional[PositionClose] = Body(None),
    service: TradingService = Depends(get_service),
):
    result = await service.close_position(
        account_id, position_id, request.price if request else None
    )
    data = result.unwrap()
    return ok(ClosePositionResponse(
        position=PositionResponse.model_validate(data["position"]),
        trade=TradeResponse.model_validate(data["trade"]),
    ))

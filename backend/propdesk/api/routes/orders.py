"""
Orders API

Single orders, OCO pairs and OCOOCO groups for one account.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from propdesk.api.deps import get_service, ok
from propdesk.execution.models import OrderStatus
from propdesk.execution.service import TradingService
from propdesk.schemas.trading import (
    ApiResponse,
    CancelGroupResponse,
    CancelOrderResponse,
    OCOGroupResponse,
    OCOOCOOrderCreate,
    OCOOrderCreate,
    OrderCreate,
    OrderResponse,
    OrderSubmitResponse,
    PositionResponse,
)


router = APIRouter()


# ===============================
# Orders
# ===============================

@router.get("/{account_id}/orders", response_model=ApiResponse[List[OrderResponse]])
async def get_orders(
    account_id: str,
    status: Optional[OrderStatus] = Query(None),
    service: TradingService = Depends(get_service),
):
    """Account orders, newest first."""
    result = await service.get_orders(account_id, status)
    return ok([OrderResponse.model_validate(o) for o in result.unwrap()])


@router.get("/{account_id}/orders/{order_id}", response_model=ApiResponse[OrderResponse])
async def get_order(account_id: str, order_id: str, service: TradingService = Depends(get_service)):
    result = await service.get_order(account_id, order_id)
    return ok(OrderResponse.model_validate(result.unwrap()))


@router.post("/{account_id}/orders", response_model=ApiResponse[OrderSubmitResponse], status_code=201)
async def submit_order(
    account_id: str,
    request: OrderCreate,
    service: TradingService = Depends(get_service),
):
    """
    Place an order.

    Market orders fill at once and return the opened position; limit and
    stop orders rest until a quote reaches their trigger.
    """
    result = await service.submit_order(account_id, request.to_request())
    data = result.unwrap()
    return ok(OrderSubmitResponse(
        order=OrderResponse.model_validate(data["order"]),
        position=PositionResponse.model_validate(data["position"]) if data["position"] else None,
    ))


@router.post("/{account_id}/orders/{order_id}/cancel", response_model=ApiResponse[CancelOrderResponse])
async def cancel_order(
    account_id: str,
    order_id: str,
    service: TradingService = Depends(get_service),
):
    """Cancel a pending order. Cancelling an OCO leg cancels its sibling too."""
    result = await service.cancel_order(account_id, order_id)
    return ok(CancelOrderResponse(
        cancelled=[OrderResponse.model_validate(o) for o in result.unwrap()]
    ))


# ===============================
# OCO
# ===============================

@router.post("/{account_id}/oco", response_model=ApiResponse[OCOGroupResponse], status_code=201)
async def submit_oco_order(
    account_id: str,
    request: OCOOrderCreate,
    service: TradingService = Depends(get_service),
):
    result = await service.submit_oco_order(
        account_id,
        symbol=request.symbol,
        side=request.side,
        volume=request.volume,
        spec=request.to_spec(),
        time_in_force=request.time_in_force,
        comment=request.comment,
    )
    return ok(OCOGroupResponse.model_validate(result.unwrap()))


@router.post("/{account_id}/ocooco", response_model=ApiResponse[OCOGroupResponse], status_code=201)
async def submit_ocooco_order(
    account_id: str,
    request: OCOOCOOrderCreate,
    service: TradingService = Depends(get_service),
):
    result = await service.submit_ocooco_order(
        account_id,
        symbol=request.symbol,
        side=request.side,
        volume=request.volume,
        primary=request.primary.to_spec(),
        secondary=request.secondary.to_spec(),
        time_in_force=request.time_in_force,
        comment=request.comment,
    )
    return ok(OCOGroupResponse.model_validate(result.unwrap()))


@router.get("/{account_id}/oco-groups", response_model=ApiResponse[List[OCOGroupResponse]])
async def get_oco_groups(account_id: str, service: TradingService = Depends(get_service)):
    result = await service.get_oco_groups(account_id)
    return ok([OCOGroupResponse.model_validate(g) for g in result.unwrap()])


@router.post(
    "/{account_id}/oco-groups/{group_id}/cancel",
    response_model=ApiResponse[CancelGroupResponse],
)
async def cancel_oco_group(
    account_id: str,
    group_id: str,
    service: TradingService = Depends(get_service),
):
    result = await service.cancel_oco_group(account_id, group_id)
    return ok(CancelGroupResponse(**result.unwrap()))

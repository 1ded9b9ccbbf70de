"""
Accounts API

Provisioning, snapshots, violations and administrator phase changes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from propdesk.api.deps import get_service, ok
from propdesk.execution.service import TradingService
from propdesk.schemas.trading import (
    AccountCreate,
    AccountResponse,
    AccountStatsResponse,
    ApiResponse,
    ViolationResponse,
)


router = APIRouter()


@router.get("", response_model=ApiResponse[List[AccountResponse]])
async def list_accounts(
    user_id: Optional[str] = Query(None, description="Only this user's accounts"),
    include_deleted: bool = Query(False),
    service: TradingService = Depends(get_service),
):
    accounts = service.list_accounts(user_id=user_id, include_deleted=include_deleted)
    return ok([AccountResponse.model_validate(a) for a in accounts])


@router.get("/stats", response_model=ApiResponse[AccountStatsResponse])
async def get_account_stats(
    user_id: Optional[str] = Query(None, description="Only this user's accounts"),
    service: TradingService = Depends(get_service),
):
    """Account counts and balance/equity/profit totals, deleted accounts excluded."""
    result = await service.get_account_stats(user_id)
    return ok(AccountStatsResponse.model_validate(result.unwrap()))


@router.post("", response_model=ApiResponse[AccountResponse], status_code=201)
async def provision_account(
    request: AccountCreate,
    service: TradingService = Depends(get_service),
):
    """Open a new challenge account in phase one."""
    result = await service.provision_account(
        user_id=request.user_id,
        challenge_type=request.challenge_type,
        account_size=request.account_size,
        profit_target_pct=request.profit_target_pct,
        max_drawdown_pct=request.max_drawdown_pct,
        daily_drawdown_pct=request.daily_drawdown_pct,
        account_number=request.account_number,
    )
    return ok(AccountResponse.model_validate(result.unwrap()))


@router.get("/{account_id}", response_model=ApiResponse[AccountResponse])
async def get_account(account_id: str, service: TradingService = Depends(get_service)):
    """Balance, equity, margin and drawdown snapshot."""
    result = await service.get_account_snapshot(account_id)
    return ok(AccountResponse.model_validate(result.unwrap()))


@router.delete("/{account_id}", response_model=ApiResponse[AccountResponse])
async def delete_account(account_id: str, service: TradingService = Depends(get_service)):
    """
    Soft-delete an account.

    Pending orders are cancelled and open positions closed at the current
    mark before the account is hidden.
    """
    result = await service.delete_account(account_id)
    return ok(AccountResponse.model_validate(result.unwrap()))


@router.get("/{account_id}/violations", response_model=ApiResponse[List[ViolationResponse]])
async def get_violations(account_id: str, service: TradingService = Depends(get_service)):
    result = await service.get_violations(account_id)
    return ok([ViolationResponse.model_validate(v) for v in result.unwrap()])


@router.post("/{account_id}/advance-phase", response_model=ApiResponse[AccountResponse])
async def advance_phase(account_id: str, service: TradingService = Depends(get_service)):
    """Move a target-reaching account to its next phase."""
    result = await service.advance_phase(account_id)
    return ok(AccountResponse.model_validate(result.unwrap()))

"""
Pydantic Schemas - Trading
PropDesk Challenge Platform

API schemas for:
- Accounts and violations
- Orders and OCO groups
- Positions
- Trades and statistics
- Quote ticks
- Response envelopes
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from propdesk.execution.models import (
    AccountPhase,
    ChallengeType,
    CloseReason,
    InstrumentClass,
    LegRole,
    OCOGroupStatus,
    OCOLeg,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionSide,
    PositionStatus,
    TimeInForce,
    TriggerDirection,
    ViolationSeverity,
    ViolationType,
)
from propdesk.execution.oco import OCOPairSpec
from propdesk.execution.validator import OrderRequest


T = TypeVar("T")


# =============================================================================
# Base Schemas
# =============================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class ErrorDetail(BaseSchema):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope: {"success": true, "data": ...}."""
    success: bool = True
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """Failure envelope: {"success": false, "error": {...}}."""
    success: bool = False
    error: ErrorDetail


# =============================================================================
# Symbol Schemas
# =============================================================================

class SymbolResponse(BaseSchema):
    ticker: str
    name: str
    instrument_class: InstrumentClass
    pip_size: Decimal
    lot_size: Decimal
    min_volume: Decimal
    max_volume: Decimal
    tick_size: Decimal
    swap_long: Decimal
    swap_short: Decimal
    trading_hours: str
    is_available: bool


# =============================================================================
# Account Schemas
# =============================================================================

class AccountCreate(BaseSchema):
    """Provision a challenge account. Omitted rules fall back to settings."""
    user_id: str = Field(..., max_length=64)
    challenge_type: ChallengeType = ChallengeType.STANDARD
    account_size: Optional[Decimal] = Field(None, gt=0)
    profit_target_pct: Optional[Decimal] = Field(None, gt=0)
    max_drawdown_pct: Optional[Decimal] = Field(None, gt=0, le=100)
    daily_drawdown_pct: Optional[Decimal] = Field(None, gt=0, le=100)
    account_number: Optional[str] = Field(None, max_length=32)


class AccountResponse(BaseSchema):
    """Account snapshot as polled by the dashboard."""
    account_id: str
    user_id: str
    account_number: str
    challenge_type: ChallengeType
    phase: AccountPhase
    starting_balance: Decimal
    balance: Decimal
    equity: Decimal
    used_margin: Decimal
    free_margin: Decimal
    profit: Decimal
    profit_percent: Decimal
    profit_target: Decimal

    max_drawdown: Decimal
    daily_drawdown: Decimal
    current_drawdown: Decimal
    max_drawdown_used: Decimal
    daily_drawdown_used: Decimal
    target_reached: bool

    challenge_started_at: datetime
    breached_at: Optional[datetime] = None
    funded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AccountStatsResponse(BaseSchema):
    total_accounts: int
    active_accounts: int
    funded_accounts: int
    breached_accounts: int
    profitable_accounts: int
    total_balance: Decimal
    total_equity: Decimal
    total_profit: Decimal


class ViolationResponse(BaseSchema):
    violation_id: str
    account_id: str
    violation_type: ViolationType
    severity: ViolationSeverity
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# =============================================================================
# Order Schemas
# =============================================================================

class OrderCreate(BaseSchema):
    """Market, limit, stop or stop-limit order."""
    symbol: str = Field(..., max_length=20)
    side: OrderSide
    volume: Decimal = Field(..., gt=0)
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    time_in_force: TimeInForce = TimeInForce.GTC
    comment: Optional[str] = Field(None, max_length=255)

    def to_request(self) -> OrderRequest:
        return OrderRequest(
            symbol=self.symbol,
            side=self.side,
            volume=self.volume,
            order_type=self.order_type,
            limit_price=self.limit_price,
            stop_price=self.stop_price,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            time_in_force=self.time_in_force,
            comment=self.comment,
        )


class OrderResponse(BaseSchema):
    order_id: str
    account_id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    volume: Decimal
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    status: OrderStatus
    filled_volume: Decimal
    fill_price: Optional[Decimal] = None
    time_in_force: TimeInForce
    trigger_direction: Optional[TriggerDirection] = None
    parent_order_id: Optional[str] = None
    oco_leg: Optional[OCOLeg] = None
    leg_role: Optional[LegRole] = None
    comment: Optional[str] = None
    reject_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    filled_at: Optional[datetime] = None


class CancelOrderResponse(BaseSchema):
    cancelled: List[OrderResponse]


# =============================================================================
# OCO Schemas
# =============================================================================

class OCOPair(BaseSchema):
    """SL/TP offsets in pips, with optional absolute overrides."""
    sl_pips: Decimal = Field(..., ge=0)
    tp_pips: Decimal = Field(..., ge=0)
    sl_order_type: OrderType = OrderType.STOP
    tp_order_type: OrderType = OrderType.LIMIT
    sl_price: Optional[Decimal] = None
    tp_price: Optional[Decimal] = None
    sl_limit_price: Optional[Decimal] = None
    tp_stop_price: Optional[Decimal] = None

    def to_spec(self) -> OCOPairSpec:
        return OCOPairSpec(
            sl_pips=self.sl_pips,
            tp_pips=self.tp_pips,
            sl_order_type=self.sl_order_type,
            tp_order_type=self.tp_order_type,
            sl_price=self.sl_price,
            tp_price=self.tp_price,
            sl_limit_price=self.sl_limit_price,
            tp_stop_price=self.tp_stop_price,
        )


class OCOOrderCreate(OCOPair):
    symbol: str = Field(..., max_length=20)
    side: OrderSide
    volume: Decimal = Field(..., gt=0)
    time_in_force: TimeInForce = TimeInForce.GTC
    comment: Optional[str] = Field(None, max_length=255)


class OCOOCOOrderCreate(BaseSchema):
    symbol: str = Field(..., max_length=20)
    side: OrderSide
    volume: Decimal = Field(..., gt=0)
    primary: OCOPair
    secondary: OCOPair
    time_in_force: TimeInForce = TimeInForce.GTC
    comment: Optional[str] = Field(None, max_length=255)


class OCOGroupResponse(BaseSchema):
    group_id: str
    account_id: str
    symbol: Optional[str] = None
    status: OCOGroupStatus
    orders: List[OrderResponse]


class CancelGroupResponse(BaseSchema):
    group_id: str
    cancelled: int
    status: OCOGroupStatus


# =============================================================================
# Position Schemas
# =============================================================================

class PositionModify(BaseSchema):
    """Omitted levels stay unchanged."""
    stop_loss: Optional[Decimal] = Field(None, gt=0)
    take_profit: Optional[Decimal] = Field(None, gt=0)


class PositionClose(BaseSchema):
    """Close at `price`, or at the current mark when omitted."""
    price: Optional[Decimal] = Field(None, gt=0)


class PositionResponse(BaseSchema):
    position_id: str
    account_id: str
    order_id: str
    symbol: str
    side: PositionSide
    volume: Decimal
    open_price: Decimal
    current_price: Decimal
    close_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    swap: Decimal
    commission: Decimal
    profit: Decimal
    profit_percent: Decimal
    margin: Decimal
    status: PositionStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None


class OrderSubmitResponse(BaseSchema):
    order: OrderResponse
    position: Optional[PositionResponse] = None


# =============================================================================
# Trade Schemas
# =============================================================================

class TradeResponse(BaseSchema):
    trade_id: str
    account_id: str
    position_id: str
    order_id: str
    symbol: str
    side: PositionSide
    volume: Decimal
    open_price: Decimal
    close_price: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    commission: Decimal
    swap: Decimal
    profit: Decimal
    pips: Decimal
    duration_seconds: int
    close_reason: CloseReason
    opened_at: datetime
    closed_at: datetime


class JournalTradeResponse(BaseSchema):
    """Trade row as stored in the journal."""
    id: str
    account_id: str
    position_id: str
    symbol: str
    side: str
    volume: Decimal
    open_price: Decimal
    close_price: Decimal
    profit: Decimal
    pips: Decimal
    duration_seconds: int
    close_reason: str
    opened_at: datetime
    closed_at: datetime


class ClosePositionResponse(BaseSchema):
    position: PositionResponse
    trade: TradeResponse


class LiquidationResponse(BaseSchema):
    account_id: str
    closed: List[str]
    failed: Dict[str, str]
    realized_profit: Decimal
    complete: bool


class TradeStatsResponse(BaseSchema):
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: Decimal
    total_profit: Decimal
    average_win: Decimal
    average_loss: Decimal
    # Infinity when there are wins and no losses
    profit_factor: Decimal = Field(..., allow_inf_nan=True)
    largest_win: Decimal
    largest_loss: Decimal
    average_duration_seconds: Decimal


# =============================================================================
# Quote Schemas
# =============================================================================

class QuoteTick(BaseSchema):
    symbol: str = Field(..., max_length=20)
    bid: Decimal
    ask: Decimal
    timestamp: Optional[datetime] = None


class QuoteTickResponse(BaseSchema):
    symbol: str
    bid: Decimal
    ask: Decimal
    mid: Decimal
    spread: Decimal
    accounts: int
    failures: List[ErrorDetail] = Field(default_factory=list)

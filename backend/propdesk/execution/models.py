"""
Bookkeeping Domain Models

Accounts, orders, positions, trades and OCO groups as held in memory by
the trading service. Prices and money are Decimal so pip arithmetic stays
exact (1.0852 - 20 * 0.0001 == 1.0832).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a prefixed unique ID, e.g. ORD-3F2A9C1B7D4E."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


# =============================================================================
# Enums
# =============================================================================

class InstrumentClass(str, Enum):
    FOREX = "forex"
    CRYPTO = "crypto"
    INDICES = "indices"
    COMMODITIES = "commodities"


class ChallengeType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    SCALING = "scaling"


class AccountPhase(str, Enum):
    """Challenge lifecycle. BREACHED and COMPLETED are terminal."""
    CHALLENGE_1 = "challenge_1"
    CHALLENGE_2 = "challenge_2"
    FUNDED = "funded"
    BREACHED = "breached"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (AccountPhase.BREACHED, AccountPhase.COMPLETED)

    @property
    def is_challenge(self) -> bool:
        return self in (AccountPhase.CHALLENGE_1, AccountPhase.CHALLENGE_2)


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def position_side(self) -> "PositionSide":
        return PositionSide.LONG if self == OrderSide.BUY else PositionSide.SHORT


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TimeInForce(str, Enum):
    GTC = "gtc"
    DAY = "day"
    IOC = "ioc"
    FOK = "fok"


class TriggerDirection(str, Enum):
    """Which way the market must move to reach a pending order's price."""
    ABOVE = "above"
    BELOW = "below"


class OCOLeg(str, Enum):
    """Pair label; OCOOCO groups hold a primary and a secondary pair."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class LegRole(str, Enum):
    STOP_LOSS = "sl"
    TAKE_PROFIT = "tp"


class OCOGroupStatus(str, Enum):
    ACTIVE = "active"
    PARTIALLY_FILLED = "partially_filled"
    CANCELLED = "cancelled"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    MANUAL = "manual"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    LIQUIDATION = "liquidation"


class ViolationType(str, Enum):
    MAX_DRAWDOWN = "max_drawdown"
    DAILY_DRAWDOWN = "daily_drawdown"


class ViolationSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# Reference data
# =============================================================================

@dataclass(frozen=True)
class Symbol:
    """Static instrument metadata."""
    ticker: str
    name: str
    instrument_class: InstrumentClass
    pip_size: Decimal
    lot_size: Decimal
    min_volume: Decimal
    max_volume: Decimal
    tick_size: Decimal
    swap_long: Decimal = ZERO
    swap_short: Decimal = ZERO
    trading_hours: str = "24/5"
    is_available: bool = True


@dataclass(frozen=True)
class Quote:
    """Latest bid/ask for an instrument."""
    symbol: str
    bid: Decimal
    ask: Decimal
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def mid(self) -> Decimal:
        return (self.bid + self.ask) / 2

    @property
    def spread(self) -> Decimal:
        return self.ask - self.bid

    def entry_price(self, side: OrderSide) -> Decimal:
        """Price an order on this side trades against: buys lift the ask, sells hit the bid."""
        return self.ask if side == OrderSide.BUY else self.bid

    def mark_price(self, side: PositionSide) -> Decimal:
        """Price an open position is marked at."""
        return self.ask if side == PositionSide.LONG else self.bid


@dataclass
class ChallengeRules:
    """Rule set an account is provisioned with."""
    challenge_type: ChallengeType = ChallengeType.STANDARD
    account_size: Decimal = Decimal("25000")
    profit_target_pct: Decimal = Decimal("10")
    max_drawdown_pct: Decimal = Decimal("10")
    daily_drawdown_pct: Decimal = Decimal("5")

    @property
    def profit_target(self) -> Decimal:
        return self.account_size * self.profit_target_pct / HUNDRED


# =============================================================================
# Account
# =============================================================================

@dataclass
class AccountViolation:
    """Recorded rule excursion."""
    violation_id: str
    account_id: str
    violation_type: ViolationType
    severity: ViolationSeverity
    description: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Account:
    """Challenge or funded trading account."""
    account_id: str
    user_id: str
    account_number: str
    challenge_type: ChallengeType
    starting_balance: Decimal
    profit_target: Decimal
    max_drawdown: Decimal  # percent of starting balance
    daily_drawdown: Decimal  # percent of starting balance
    phase: AccountPhase = AccountPhase.CHALLENGE_1

    balance: Decimal = ZERO
    equity: Decimal = ZERO
    used_margin: Decimal = ZERO
    free_margin: Decimal = ZERO
    profit: Decimal = ZERO
    profit_percent: Decimal = ZERO

    current_drawdown: Decimal = ZERO
    max_drawdown_used: Decimal = ZERO
    daily_drawdown_used: Decimal = ZERO
    peak_equity: Decimal = ZERO
    daily_start_equity: Decimal = ZERO
    daily_reset_at: Optional[datetime] = None
    daily_warning_issued: bool = False
    target_reached: bool = False

    challenge_started_at: datetime = field(default_factory=utcnow)
    breached_at: Optional[datetime] = None
    funded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    violations: List[AccountViolation] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.balance:
            self.balance = self.starting_balance
        if not self.equity:
            self.equity = self.balance
        if not self.free_margin:
            self.free_margin = self.equity - self.used_margin
        if not self.peak_equity:
            self.peak_equity = self.equity
        if not self.daily_start_equity:
            self.daily_start_equity = self.equity

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_tradeable(self) -> bool:
        return not self.phase.is_terminal and not self.is_deleted


# =============================================================================
# Orders
# =============================================================================

@dataclass
class Order:
    """Trading order. Immutable once filled or cancelled."""
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
    status: OrderStatus = OrderStatus.PENDING
    filled_volume: Decimal = ZERO
    fill_price: Optional[Decimal] = None
    time_in_force: TimeInForce = TimeInForce.GTC
    trigger_direction: Optional[TriggerDirection] = None
    parent_order_id: Optional[str] = None  # OCO group id
    oco_leg: Optional[OCOLeg] = None
    leg_role: Optional[LegRole] = None
    comment: Optional[str] = None
    reject_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    filled_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    @property
    def trigger_price(self) -> Optional[Decimal]:
        """Level a pending order activates at. Stop legs trigger on the stop price."""
        if self.order_type in (OrderType.STOP, OrderType.STOP_LIMIT):
            return self.stop_price if self.stop_price is not None else self.limit_price
        return self.limit_price if self.limit_price is not None else self.stop_price

    def is_triggered_by(self, quote: Quote) -> bool:
        """True when the side-relevant quote price reached the trigger level."""
        trigger = self.trigger_price
        if not self.is_pending or trigger is None or self.trigger_direction is None:
            return False

        price = quote.entry_price(self.side)
        if self.trigger_direction == TriggerDirection.ABOVE:
            return price >= trigger
        return price <= trigger


@dataclass
class OCOGroup:
    """View over the orders sharing a parent group id."""
    group_id: str
    account_id: str
    orders: List[Order] = field(default_factory=list)

    @property
    def status(self) -> OCOGroupStatus:
        if any(o.status == OrderStatus.FILLED for o in self.orders):
            return OCOGroupStatus.PARTIALLY_FILLED
        if self.orders and all(
            o.status in (OrderStatus.CANCELLED, OrderStatus.REJECTED) for o in self.orders
        ):
            return OCOGroupStatus.CANCELLED
        return OCOGroupStatus.ACTIVE

    @property
    def symbol(self) -> Optional[str]:
        return self.orders[0].symbol if self.orders else None

    def leg(self, pair: OCOLeg, role: LegRole) -> Optional[Order]:
        for order in self.orders:
            if order.oco_leg == pair and order.leg_role == role:
                return order
        return None


# =============================================================================
# Positions & Trades
# =============================================================================

@dataclass
class Position:
    """Open or closed position."""
    position_id: str
    account_id: str
    order_id: str
    symbol: str
    side: PositionSide
    volume: Decimal
    open_price: Decimal
    current_price: Decimal
    margin: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    close_price: Optional[Decimal] = None
    swap: Decimal = ZERO
    commission: Decimal = ZERO
    profit: Decimal = ZERO
    profit_percent: Decimal = ZERO
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def price_diff(self, price: Decimal) -> Decimal:
        if self.side == PositionSide.LONG:
            return price - self.open_price
        return self.open_price - price

    def should_trigger_sl(self, price: Decimal) -> bool:
        """Check if stop loss should be triggered."""
        if self.stop_loss is None:
            return False
        if self.side == PositionSide.LONG:
            return price <= self.stop_loss
        return price >= self.stop_loss

    def should_trigger_tp(self, price: Decimal) -> bool:
        """Check if take profit should be triggered."""
        if self.take_profit is None:
            return False
        if self.side == PositionSide.LONG:
            return price >= self.take_profit
        return price <= self.take_profit


@dataclass(frozen=True)
class Trade:
    """Completed trade record. Never updated after creation."""
    trade_id: str
    account_id: str
    position_id: str
    order_id: str
    symbol: str
    side: PositionSide
    volume: Decimal
    open_price: Decimal
    close_price: Decimal
    stop_loss: Optional[Decimal]
    take_profit: Optional[Decimal]
    commission: Decimal
    swap: Decimal
    profit: Decimal
    pips: Decimal
    duration_seconds: int
    close_reason: CloseReason
    opened_at: datetime
    closed_at: datetime


@dataclass
class TradeStats:
    """Aggregates over an account's trade history."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: Decimal = ZERO
    total_profit: Decimal = ZERO
    average_win: Decimal = ZERO
    average_loss: Decimal = ZERO
    profit_factor: Decimal = ZERO
    largest_win: Decimal = ZERO
    largest_loss: Decimal = ZERO
    average_duration_seconds: Decimal = ZERO


@dataclass
class AccountStats:
    """Totals over a user's live (not deleted) accounts."""
    total_accounts: int = 0
    active_accounts: int = 0
    funded_accounts: int = 0
    breached_accounts: int = 0
    profitable_accounts: int = 0
    total_balance: Decimal = ZERO
    total_equity: Decimal = ZERO
    total_profit: Decimal = ZERO


@dataclass
class LiquidationReport:
    """Outcome of closing every open position of an account."""
    account_id: str
    closed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    realized_profit: Decimal = ZERO

    @property
    def complete(self) -> bool:
        return not self.failed

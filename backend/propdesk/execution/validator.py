"""
Order Validator

Accepts or rejects proposed orders against symbol constraints and the
account's free margin. Accepted market orders fill immediately at the
current quote plus adverse slippage; accepted limit/stop orders rest in
the order book until a quote reaches their trigger level.

A rejected submission leaves no order and no position behind.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from loguru import logger

from propdesk.core.errors import (
    AccountNotActive,
    InsufficientMargin,
    InvalidOrder,
    VolumeOutOfRange,
)
from propdesk.execution.ledger import PositionLedger
from propdesk.execution.models import (
    Account,
    LegRole,
    OCOLeg,
    Order,
    OrderSide,
    OrderType,
    Position,
    Symbol,
    TimeInForce,
    TriggerDirection,
    new_id,
)
from propdesk.execution.orders import OrderBook
from propdesk.execution.quotes import QuoteBook
from propdesk.execution.symbols import SymbolRegistry


@dataclass
class OrderRequest:
    """Proposed order as received from the terminal."""
    symbol: str
    side: OrderSide
    volume: Decimal
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    time_in_force: TimeInForce = TimeInForce.GTC
    comment: Optional[str] = None
    parent_order_id: Optional[str] = None
    oco_leg: Optional[OCOLeg] = None
    leg_role: Optional[LegRole] = None
    trigger_direction: Optional[TriggerDirection] = None


def default_direction(side: OrderSide, order_type: OrderType) -> TriggerDirection:
    """
    Buy limits and sell stops wait for the price to fall; the others for it to rise.

    A limit already through the market triggers on the next quote.
    """
    buys_low = order_type == OrderType.LIMIT
    if side == OrderSide.SELL:
        buys_low = not buys_low
    return TriggerDirection.BELOW if buys_low else TriggerDirection.ABOVE


class OrderValidator:
    """Validation, pending-order placement and fills."""

    def __init__(
        self,
        symbols: SymbolRegistry,
        quotes: QuoteBook,
        orders: OrderBook,
        ledger: PositionLedger,
        margin_per_lot: Decimal = Decimal("1000"),
        slippage_pips: int = 2,
    ):
        self.symbols = symbols
        self.quotes = quotes
        self.orders = orders
        self.ledger = ledger
        self.margin_per_lot = margin_per_lot
        self.slippage_pips = slippage_pips

    def margin_required(self, volume: Decimal) -> Decimal:
        """Flat margin per lot, independent of instrument and price."""
        return volume * self.margin_per_lot

    def slippage(self, symbol: Symbol, side: OrderSide) -> Decimal:
        """Slippage is adverse - buy higher, sell lower."""
        amount = symbol.pip_size * self.slippage_pips
        return amount if side == OrderSide.BUY else -amount

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self, account: Account, request: OrderRequest) -> Symbol:
        """Raise the first failing check; return the resolved symbol."""
        if not account.is_tradeable:
            raise AccountNotActive(
                f"Account {account.account_id} is not accepting orders",
                account_id=account.account_id,
                phase=account.phase,
            )

        symbol = self.symbols.get(request.symbol)

        if request.volume < symbol.min_volume or request.volume > symbol.max_volume:
            raise VolumeOutOfRange(
                f"Volume {request.volume} outside {symbol.min_volume}-{symbol.max_volume} for {symbol.ticker}",
                volume=request.volume,
                min_volume=symbol.min_volume,
                max_volume=symbol.max_volume,
            )

        if request.order_type != OrderType.MARKET:
            price = request.stop_price if request.stop_price is not None else request.limit_price
            if price is None:
                raise InvalidOrder(
                    f"{request.order_type.value} order requires a price",
                    order_type=request.order_type,
                )
            if price <= 0:
                raise InvalidOrder("Order price must be positive", price=price)

        required = self.margin_required(request.volume)
        if required > account.free_margin:
            raise InsufficientMargin(
                "Insufficient margin",
                required=required,
                available=account.free_margin,
            )

        return symbol

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def _build_order(self, account: Account, symbol: Symbol, request: OrderRequest) -> Order:
        return Order(
            order_id=new_id("ORD"),
            account_id=account.account_id,
            symbol=symbol.ticker,
            side=request.side,
            order_type=request.order_type,
            volume=request.volume,
            limit_price=request.limit_price,
            stop_price=request.stop_price,
            stop_loss=request.stop_loss,
            take_profit=request.take_profit,
            time_in_force=request.time_in_force,
            parent_order_id=request.parent_order_id,
            oco_leg=request.oco_leg,
            leg_role=request.leg_role,
            trigger_direction=request.trigger_direction,
            comment=request.comment,
        )

    def submit(self, account: Account, request: OrderRequest) -> Tuple[Order, Optional[Position]]:
        """
        Validate and accept an order.

        Returns the order and, for market orders, the position it opened.
        """
        symbol = self.validate(account, request)

        if request.order_type == OrderType.MARKET:
            quote = self.quotes.get(symbol.ticker)
            order = self._build_order(account, symbol, request)
            fill_price = quote.entry_price(request.side) + self.slippage(symbol, request.side)
            self.orders.add(order)
            self.orders.mark_filled(order, fill_price)
            position = self.ledger.open_position(
                order, fill_price, self.margin_required(order.volume), order.filled_at
            )
            logger.info(
                f"Order filled: {order.order_id} {order.side.value} {order.volume} "
                f"{order.symbol} @ {fill_price}"
            )
            return order, position

        order = self._build_order(account, symbol, request)
        if order.trigger_direction is None:
            order.trigger_direction = default_direction(order.side, order.order_type)
        self.orders.add(order)
        logger.info(
            f"Pending order placed: {order.order_id} {order.order_type.value} {order.side.value} "
            f"{order.volume} {order.symbol} trigger @ {order.trigger_price} ({order.trigger_direction.value})"
        )
        return order, None

    # -------------------------------------------------------------------------
    # Pending fills
    # -------------------------------------------------------------------------

    def fill_price_for(self, order: Order, symbol: Symbol) -> Decimal:
        """Limits fill at their limit; stops fill at the trigger plus slippage."""
        if order.order_type == OrderType.STOP:
            return order.trigger_price + self.slippage(symbol, order.side)
        if order.limit_price is not None:
            return order.limit_price
        return order.trigger_price

    def fill_pending(self, account: Account, order: Order) -> Optional[Position]:
        """
        Fill a triggered pending order.

        Margin is checked again at fill time; a shortfall rejects the order
        instead of opening the position.
        """
        symbol = self.symbols.get(order.symbol)
        required = self.margin_required(order.volume)

        if not account.is_tradeable or required > account.free_margin:
            reason = (
                f"Insufficient margin at trigger: required {required}, available {account.free_margin}"
                if account.is_tradeable
                else f"Account {account.phase.value}"
            )
            self.orders.mark_rejected(order, reason)
            logger.warning(f"Pending order rejected: {order.order_id} - {reason}")
            return None

        fill_price = self.fill_price_for(order, symbol)
        self.orders.mark_filled(order, fill_price)
        position = self.ledger.open_position(order, fill_price, required, order.filled_at)
        logger.info(
            f"Pending order filled: {order.order_id} {order.side.value} {order.volume} "
            f"{order.symbol} @ {fill_price}"
        )
        return position

"""
Position Ledger

Owns open and closed positions and is the only writer of a position's
mark price and floating profit. Closing a position realizes its profit
into the account balance exactly once and hands it to the trade recorder.

Profit follows the pip-value formulation:

    pip_value = volume * lot_size * pip_size
    profit    = price_diff * pip_value / pip_size

with price_diff = mark - open for longs and open - mark for shorts.
Longs are marked at the ask, shorts at the bid.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from propdesk.core.errors import PositionNotFound, PositionNotOpen, TradingError
from propdesk.execution.models import (
    HUNDRED,
    Account,
    CloseReason,
    LiquidationReport,
    Order,
    Position,
    PositionStatus,
    Quote,
    Symbol,
    Trade,
    new_id,
    utcnow,
)
from propdesk.execution.recorder import TradeRecorder
from propdesk.execution.symbols import SymbolRegistry


def calculate_profit(position: Position, price: Decimal, symbol: Symbol) -> Decimal:
    """Floating profit of a position at a given price."""
    pip_value = position.volume * symbol.lot_size * symbol.pip_size
    return position.price_diff(price) * pip_value / symbol.pip_size


class PositionLedger:
    """Open/closed position store with mark-to-market and close."""

    def __init__(self, symbols: SymbolRegistry, recorder: TradeRecorder):
        self.symbols = symbols
        self.recorder = recorder
        self._positions: Dict[str, Position] = {}

    # -------------------------------------------------------------------------
    # Opening
    # -------------------------------------------------------------------------

    def open_position(
        self,
        order: Order,
        fill_price: Decimal,
        margin: Decimal,
        opened_at: Optional[datetime] = None,
    ) -> Position:
        """Create the position spawned by a filled order."""
        now = opened_at or utcnow()
        position = Position(
            position_id=new_id("POS"),
            account_id=order.account_id,
            order_id=order.order_id,
            symbol=order.symbol,
            side=order.side.position_side,
            volume=order.volume,
            open_price=fill_price,
            current_price=fill_price,
            margin=margin,
            stop_loss=order.stop_loss,
            take_profit=order.take_profit,
            opened_at=now,
            updated_at=now,
        )
        self._positions[position.position_id] = position

        logger.info(
            f"Position opened: {position.position_id} {position.side.value} "
            f"{position.volume} {position.symbol} @ {fill_price} "
            f"SL: {position.stop_loss} TP: {position.take_profit}"
        )
        return position

    # -------------------------------------------------------------------------
    # Marking
    # -------------------------------------------------------------------------

    def _apply_mark(self, position: Position, price: Decimal, symbol: Symbol) -> None:
        position.current_price = price
        position.profit = calculate_profit(position, price, symbol)
        position.profit_percent = position.price_diff(price) / position.open_price * HUNDRED

    def mark_to_market(
        self,
        symbol: str,
        bid: Decimal,
        ask: Decimal,
        account_id: Optional[str] = None,
    ) -> List[Position]:
        """
        Re-mark every open position on a symbol.

        Idempotent: the same quote always yields the same profit.
        """
        instrument = self.symbols.get(symbol)
        quote = Quote(symbol=instrument.ticker, bid=bid, ask=ask)
        touched = []
        now = utcnow()

        for position in self._positions.values():
            if not position.is_open or position.symbol != instrument.ticker:
                continue
            if account_id is not None and position.account_id != account_id:
                continue

            self._apply_mark(position, quote.mark_price(position.side), instrument)
            position.updated_at = now
            touched.append(position)

        return touched

    def exit_reason(self, position: Position) -> Optional[CloseReason]:
        """Stop loss or take profit hit at the current mark."""
        if position.should_trigger_sl(position.current_price):
            return CloseReason.STOP_LOSS
        if position.should_trigger_tp(position.current_price):
            return CloseReason.TAKE_PROFIT
        return None

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def get_position(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFound(f"Position not found: {position_id}", position_id=position_id)
        return position

    def modify(
        self,
        position_id: str,
        stop_loss: Optional[Decimal] = None,
        take_profit: Optional[Decimal] = None,
    ) -> Position:
        """Overwrite the supplied SL/TP levels of an open position."""
        position = self.get_position(position_id)
        if not position.is_open:
            raise PositionNotOpen(
                f"Position {position_id} is closed",
                position_id=position_id,
            )

        if stop_loss is not None:
            position.stop_loss = stop_loss
        if take_profit is not None:
            position.take_profit = take_profit
        position.updated_at = utcnow()

        logger.info(
            f"Position modified: {position_id} SL: {position.stop_loss} TP: {position.take_profit}"
        )
        return position

    def close(
        self,
        account: Account,
        position_id: str,
        close_price: Decimal,
        reason: CloseReason = CloseReason.MANUAL,
        closed_at: Optional[datetime] = None,
    ) -> Tuple[Position, Trade]:
        """
        Close a position at a price and realize its profit.

        Raises PositionNotOpen when the position was already closed, so the
        balance can never be credited twice.
        """
        position = self.get_position(position_id)
        if not position.is_open:
            raise PositionNotOpen(
                f"Position {position_id} is already closed",
                position_id=position_id,
            )

        instrument = self.symbols.get(position.symbol)
        now = closed_at or utcnow()

        self._apply_mark(position, close_price, instrument)
        position.close_price = close_price
        position.status = PositionStatus.CLOSED
        position.closed_at = now
        position.updated_at = now

        account.balance += position.profit
        trade = self.recorder.record_trade(position, close_price, now, instrument.pip_size, reason)

        logger.info(
            f"Position closed: {position_id} {position.symbol} @ {close_price} "
            f"profit: {position.profit} ({reason.value})"
        )
        return position, trade

    def close_all(
        self,
        account: Account,
        price_for: Callable[[Position], Decimal],
        reason: CloseReason = CloseReason.LIQUIDATION,
    ) -> Tuple[LiquidationReport, List[Trade]]:
        """
        Close every open position of an account, oldest first.

        A position that cannot be priced is reported as failed and the run
        continues with the rest. Already closed positions are skipped, so
        calling again only retries the remainder.
        """
        report = LiquidationReport(account_id=account.account_id)
        trades = []

        for position in self.get_open_positions(account.account_id):
            try:
                _, trade = self.close(account, position.position_id, price_for(position), reason)
            except TradingError as e:
                report.failed[position.position_id] = e.message
                logger.warning(f"Could not close {position.position_id}: {e.message}")
                continue
            report.closed.append(position.position_id)
            report.realized_profit += trade.profit
            trades.append(trade)

        return report, trades

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_open_positions(self, account_id: str) -> List[Position]:
        return sorted(
            (p for p in self._positions.values() if p.account_id == account_id and p.is_open),
            key=lambda p: p.opened_at,
        )

    def get_positions(
        self,
        account_id: str,
        status: Optional[PositionStatus] = None,
    ) -> List[Position]:
        return sorted(
            (
                p for p in self._positions.values()
                if p.account_id == account_id and (status is None or p.status == status)
            ),
            key=lambda p: p.opened_at,
        )

    def accounts_holding(self, symbol: str) -> Set[str]:
        """Accounts with an open position on a symbol."""
        return {
            p.account_id for p in self._positions.values()
            if p.is_open and p.symbol == symbol.upper()
        }

    def floating_profit(self, account_id: str) -> Decimal:
        return sum((p.profit for p in self.get_open_positions(account_id)), Decimal("0"))

    def used_margin(self, account_id: str) -> Decimal:
        return sum((p.margin for p in self.get_open_positions(account_id)), Decimal("0"))

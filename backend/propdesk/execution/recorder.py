"""
Trade Recorder

Append-only log of closed trades and the statistics derived from it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from propdesk.execution.models import (
    HUNDRED,
    ZERO,
    CloseReason,
    Position,
    PositionSide,
    Trade,
    TradeStats,
    new_id,
)


INFINITY = Decimal("Infinity")


class TradeRecorder:
    """Holds every trade once; never updates or deletes."""

    def __init__(self):
        self._trades: Dict[str, List[Trade]] = {}

    def record_trade(
        self,
        position: Position,
        close_price: Decimal,
        closed_at: datetime,
        pip_size: Decimal,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> Trade:
        """Create the trade for a position that has just been closed."""
        pips = (close_price - position.open_price) / pip_size
        if position.side == PositionSide.SHORT:
            pips = -pips

        trade = Trade(
            trade_id=new_id("TRD"),
            account_id=position.account_id,
            position_id=position.position_id,
            order_id=position.order_id,
            symbol=position.symbol,
            side=position.side,
            volume=position.volume,
            open_price=position.open_price,
            close_price=close_price,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            commission=position.commission,
            swap=position.swap,
            profit=position.profit,
            pips=pips,
            duration_seconds=int((closed_at - position.opened_at).total_seconds()),
            close_reason=reason,
            opened_at=position.opened_at,
            closed_at=closed_at,
        )
        self._trades.setdefault(position.account_id, []).append(trade)
        return trade

    def get_trades(
        self,
        account_id: str,
        symbol: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Trade]:
        """Trade history, newest close first."""
        trades = [
            t for t in self._trades.get(account_id, [])
            if symbol is None or t.symbol == symbol.upper()
        ]
        trades.sort(key=lambda t: t.closed_at, reverse=True)
        end = offset + limit if limit is not None else None
        return trades[offset:end]

    def get_stats(self, account_id: str) -> TradeStats:
        """
        Aggregate statistics.

        profit_factor is average win over absolute average loss: 0 with no
        winning trades, Decimal('Infinity') with wins and no losses.
        """
        trades = self._trades.get(account_id, [])
        if not trades:
            return TradeStats()

        wins = [t.profit for t in trades if t.profit > 0]
        losses = [t.profit for t in trades if t.profit < 0]

        average_win = sum(wins, ZERO) / len(wins) if wins else ZERO
        average_loss = sum(losses, ZERO) / len(losses) if losses else ZERO

        if not wins:
            profit_factor = ZERO
        elif not losses:
            profit_factor = INFINITY
        else:
            profit_factor = average_win / abs(average_loss)

        total_duration = sum(t.duration_seconds for t in trades)

        return TradeStats(
            total_trades=len(trades),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=Decimal(len(wins)) / Decimal(len(trades)) * HUNDRED,
            total_profit=sum((t.profit for t in trades), ZERO),
            average_win=average_win,
            average_loss=average_loss,
            profit_factor=profit_factor,
            largest_win=max(wins) if wins else ZERO,
            largest_loss=min(losses) if losses else ZERO,
            average_duration_seconds=Decimal(total_duration) / Decimal(len(trades)),
        )

    def count(self, account_id: str) -> int:
        return len(self._trades.get(account_id, []))

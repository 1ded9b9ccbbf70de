"""
Trade Journal

Mirrors bookkeeping changes into the journal tables. The in-memory
service remains authoritative; the journal is what the dashboard and
history pages query.
"""

from typing import Iterable

from loguru import logger

from propdesk.db.models import (
    AccountRecord,
    OrderRecord,
    PositionRecord,
    TradeRecord,
    ViolationRecord,
)
from propdesk.db.repository import (
    AccountRepository,
    OrderRepository,
    PositionRepository,
    TradeRepository,
    ViolationRepository,
)
from propdesk.db.session import DatabaseService
from propdesk.execution.models import Account, AccountViolation, Order, Position, Trade


def _value(enum_or_none):
    return enum_or_none.value if enum_or_none is not None else None


def account_record(account: Account) -> AccountRecord:
    return AccountRecord(
        id=account.account_id,
        user_id=account.user_id,
        account_number=account.account_number,
        challenge_type=account.challenge_type.value,
        phase=account.phase.value,
        starting_balance=account.starting_balance,
        balance=account.balance,
        equity=account.equity,
        used_margin=account.used_margin,
        free_margin=account.free_margin,
        profit=account.profit,
        profit_percent=account.profit_percent,
        profit_target=account.profit_target,
        max_drawdown=account.max_drawdown,
        daily_drawdown=account.daily_drawdown,
        current_drawdown=account.current_drawdown,
        max_drawdown_used=account.max_drawdown_used,
        daily_drawdown_used=account.daily_drawdown_used,
        target_reached=account.target_reached,
        challenge_started_at=account.challenge_started_at,
        breached_at=account.breached_at,
        funded_at=account.funded_at,
        completed_at=account.completed_at,
        deleted_at=account.deleted_at,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def order_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.order_id,
        account_id=order.account_id,
        symbol=order.symbol,
        side=order.side.value,
        type=order.order_type.value,
        volume=order.volume,
        limit_price=order.limit_price,
        stop_price=order.stop_price,
        sl=order.stop_loss,
        tp=order.take_profit,
        status=order.status.value,
        filled_volume=order.filled_volume,
        fill_price=order.fill_price,
        time_in_force=order.time_in_force.value,
        parent_order_id=order.parent_order_id,
        oco_leg=_value(order.oco_leg),
        leg_role=_value(order.leg_role),
        comment=order.comment,
        reject_reason=order.reject_reason,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def position_record(position: Position) -> PositionRecord:
    return PositionRecord(
        id=position.position_id,
        account_id=position.account_id,
        order_id=position.order_id,
        symbol=position.symbol,
        side=position.side.value,
        volume=position.volume,
        open_price=position.open_price,
        current_price=position.current_price,
        close_price=position.close_price,
        sl=position.stop_loss,
        tp=position.take_profit,
        swap=position.swap,
        commission=position.commission,
        profit=position.profit,
        margin=position.margin,
        status=position.status.value,
        opened_at=position.opened_at,
        closed_at=position.closed_at,
    )


def trade_record(trade: Trade) -> TradeRecord:
    return TradeRecord(
        id=trade.trade_id,
        account_id=trade.account_id,
        position_id=trade.position_id,
        order_id=trade.order_id,
        symbol=trade.symbol,
        side=trade.side.value,
        volume=trade.volume,
        open_price=trade.open_price,
        close_price=trade.close_price,
        sl=trade.stop_loss,
        tp=trade.take_profit,
        commission=trade.commission,
        swap=trade.swap,
        profit=trade.profit,
        pips=trade.pips,
        duration_seconds=trade.duration_seconds,
        close_reason=trade.close_reason.value,
        opened_at=trade.opened_at,
        closed_at=trade.closed_at,
    )


def violation_record(violation: AccountViolation) -> ViolationRecord:
    return ViolationRecord(
        id=violation.violation_id,
        account_id=violation.account_id,
        type=violation.violation_type.value,
        severity=violation.severity.value,
        description=violation.description,
        details=violation.details,
        created_at=violation.created_at,
    )


class TradeJournal:
    """Writes one batch of changes per service operation, in one transaction."""

    def __init__(self, database: DatabaseService):
        self.database = database

    async def write(
        self,
        accounts: Iterable[Account] = (),
        orders: Iterable[Order] = (),
        positions: Iterable[Position] = (),
        trades: Iterable[Trade] = (),
        violations: Iterable[AccountViolation] = (),
    ) -> None:
        async with self.database.session() as session:
            account_repo = AccountRepository(session)
            order_repo = OrderRepository(session)
            position_repo = PositionRepository(session)
            trade_repo = TradeRepository(session)
            violation_repo = ViolationRepository(session)

            for account in accounts:
                await account_repo.upsert(account_record(account))
            for order in orders:
                await order_repo.upsert(order_record(order))
            for position in positions:
                await position_repo.upsert(position_record(position))
            for trade in trades:
                await trade_repo.add(trade_record(trade))
            for violation in violations:
                await violation_repo.add(violation_record(violation))

        logger.debug("Journal batch written")

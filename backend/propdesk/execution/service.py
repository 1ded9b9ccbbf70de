"""
Trading Service

Process-scoped owner of the bookkeeping core: symbol registry, quote book,
order book, position ledger, OCO groups, risk engine and trade recorder.

Concurrency model:
    One asyncio.Lock per account. Every mutation of an account's orders,
    positions and margin figures runs inside that lock, so the same account
    never interleaves two mutations. A quote tick fans out to the affected
    accounts with asyncio.gather; different accounts proceed concurrently.

Boundary:
    Every public operation returns an OperationResult. TradingErrors become
    typed failures; anything unexpected is logged with its traceback and
    surfaced as an InternalError.

Usage:
    service = TradingService(event_bus=bus)
    await service.start()
    result = await service.submit_order(account_id, OrderRequest(...))
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from loguru import logger

from propdesk.core.config import TradingSettings, settings
from propdesk.core.errors import (
    AccountNotFound,
    GroupNotFound,
    InternalError,
    OperationResult,
    OrderNotFound,
    PositionNotFound,
    TradingError,
)
from propdesk.core.events import (
    AccountEvent,
    BaseEvent,
    EventBus,
    EventPriority,
    EventType,
    OrderEvent,
    PositionEvent,
    RiskEvent,
    TickEvent,
    TradeEvent,
)
from propdesk.db.journal import TradeJournal
from propdesk.execution.ledger import PositionLedger
from propdesk.execution.models import (
    Account,
    AccountPhase,
    AccountStats,
    AccountViolation,
    ChallengeRules,
    ChallengeType,
    CloseReason,
    LiquidationReport,
    OCOGroup,
    Order,
    OrderSide,
    OrderStatus,
    Position,
    PositionStatus,
    Quote,
    TimeInForce,
    Trade,
    TradeStats,
    ViolationType,
    utcnow,
)
from propdesk.execution.oco import OCOGroupManager, OCOPairSpec
from propdesk.execution.orders import OrderBook
from propdesk.execution.quotes import QuoteBook
from propdesk.execution.recorder import TradeRecorder
from propdesk.execution.risk import AccountRiskEngine, RiskEvaluation, parse_reset_time
from propdesk.execution.symbols import SymbolRegistry
from propdesk.execution.validator import OrderRequest, OrderValidator


T = TypeVar("T")


def _f(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _or_default(value: Optional[Decimal], default: Decimal) -> Decimal:
    # An explicit zero is a real rule value
    return default if value is None else value


@dataclass
class _Outbox:
    """Changes made by one operation, flushed to the journal and the event bus."""
    events: List[BaseEvent] = field(default_factory=list)
    accounts: Dict[str, Account] = field(default_factory=dict)
    orders: Dict[str, Order] = field(default_factory=dict)
    positions: Dict[str, Position] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)
    violations: List[AccountViolation] = field(default_factory=list)

    def order(self, order: Order, event_type: EventType) -> None:
        self.orders[order.order_id] = order
        self.events.append(OrderEvent(
            event_type=event_type,
            order_id=order.order_id,
            account_id=order.account_id,
            symbol=order.symbol,
            side=order.side.value,
            order_type=order.order_type.value,
            volume=float(order.volume),
            status=order.status.value,
            price=_f(order.fill_price if order.fill_price is not None else order.trigger_price),
            parent_order_id=order.parent_order_id,
            reject_reason=order.reject_reason,
            correlation_id=order.parent_order_id,
        ))

    def position(
        self,
        position: Position,
        event_type: EventType,
        reason: Optional[CloseReason] = None,
    ) -> None:
        self.positions[position.position_id] = position
        self.events.append(PositionEvent(
            event_type=event_type,
            position_id=position.position_id,
            account_id=position.account_id,
            symbol=position.symbol,
            side=position.side.value,
            volume=float(position.volume),
            open_price=float(position.open_price),
            current_price=float(position.current_price),
            profit=float(position.profit),
            status=position.status.value,
            stop_loss=_f(position.stop_loss),
            take_profit=_f(position.take_profit),
            close_reason=reason.value if reason else None,
        ))

    def trade(self, trade: Trade) -> None:
        self.trades.append(trade)
        self.events.append(TradeEvent(
            trade_id=trade.trade_id,
            account_id=trade.account_id,
            position_id=trade.position_id,
            symbol=trade.symbol,
            side=trade.side.value,
            volume=float(trade.volume),
            open_price=float(trade.open_price),
            close_price=float(trade.close_price),
            profit=float(trade.profit),
            pips=float(trade.pips),
            close_reason=trade.close_reason.value,
        ))

    def account(self, account: Account) -> None:
        """Record the final snapshot; only the last one per account is published."""
        self.accounts[account.account_id] = account

    def account_events(self) -> List[AccountEvent]:
        return [
            AccountEvent(
                account_id=a.account_id,
                phase=a.phase.value,
                balance=float(a.balance),
                equity=float(a.equity),
                used_margin=float(a.used_margin),
                free_margin=float(a.free_margin),
                current_drawdown=float(a.current_drawdown),
                daily_drawdown_used=float(a.daily_drawdown_used),
            )
            for a in self.accounts.values()
        ]


class TradingService:
    """Bookkeeping core for challenge accounts."""

    def __init__(
        self,
        config: Optional[TradingSettings] = None,
        symbols: Optional[SymbolRegistry] = None,
        event_bus: Optional[EventBus] = None,
        journal: Optional[TradeJournal] = None,
    ):
        self.config = config or settings.trading
        self.event_bus = event_bus
        self.journal = journal

        if symbols is None:
            symbols = (
                SymbolRegistry.from_file(self.config.symbols_file)
                if self.config.symbols_file
                else SymbolRegistry()
            )
        self.symbols = symbols
        self.quotes = QuoteBook(self.config.quote_max_age_seconds)
        self.orders = OrderBook()
        self.recorder = TradeRecorder()
        self.ledger = PositionLedger(self.symbols, self.recorder)
        self.validator = OrderValidator(
            self.symbols,
            self.quotes,
            self.orders,
            self.ledger,
            margin_per_lot=self.config.margin_per_lot,
            slippage_pips=self.config.slippage_pips,
        )
        self.oco = OCOGroupManager(self.validator, self.orders, self.quotes)
        self.risk = AccountRiskEngine(
            self.ledger,
            daily_reset_time=parse_reset_time(self.config.daily_reset_time),
            daily_reset_timezone=self.config.daily_reset_timezone,
        )

        self.accounts: Dict[str, Account] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to ticks and start the daily reset monitor."""
        if self._running:
            return

        self._running = True
        if self.event_bus:
            await self.event_bus.subscribe(EventType.TICK_RECEIVED, self._on_tick_event)

        self._monitor_task = asyncio.create_task(self._daily_reset_monitor())
        logger.info(f"Trading service started with {len(self.symbols)} symbols")

    async def stop(self) -> None:
        """Stop the monitor and drop the tick subscription."""
        self._running = False

        if self._monitor_task and not self._monitor_task.done():
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        self._monitor_task = None

        if self.event_bus:
            await self.event_bus.unsubscribe(EventType.TICK_RECEIVED, self._on_tick_event)

        logger.info("Trading service stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _on_tick_event(self, event: BaseEvent) -> None:
        if not isinstance(event, TickEvent):
            return
        result = await self.on_quote(
            event.symbol,
            Decimal(str(event.bid)),
            Decimal(str(event.ask)),
            event.timestamp,
        )
        if not result.ok:
            logger.warning(f"Tick for {event.symbol} dropped: {result.error.message}")

    async def _daily_reset_monitor(self) -> None:
        """Background task rolling accounts into a new daily period."""
        while self._running:
            try:
                await self.run_daily_reset()
                await asyncio.sleep(self.config.monitor_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in daily reset monitor: {e}")
                await asyncio.sleep(1)

    async def run_daily_reset(self, now: Optional[datetime] = None) -> int:
        """Apply a pending daily reset to every account; returns how many rolled over."""
        rolled = 0
        for account_id in list(self.accounts):
            async with self._lock_for(account_id):
                account = self.accounts[account_id]
                if self.risk.check_daily_reset(account, now):
                    rolled += 1
                    outbox = _Outbox()
                    outbox.account(account)
                    await self._flush(outbox)
        if rolled:
            logger.info(f"Daily reset applied to {rolled} accounts")
        return rolled

    # =========================================================================
    # Boundary helpers
    # =========================================================================

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def _get_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFound(f"Account not found: {account_id}", account_id=account_id)
        return account

    async def _flush(self, outbox: _Outbox) -> None:
        """Journal and publish; failures here never undo bookkeeping."""
        if self.journal:
            try:
                await self.journal.write(
                    accounts=outbox.accounts.values(),
                    orders=outbox.orders.values(),
                    positions=outbox.positions.values(),
                    trades=outbox.trades,
                    violations=outbox.violations,
                )
            except Exception as e:
                logger.warning(f"Journal write failed: {e}")

        if self.event_bus:
            for event in outbox.events + outbox.account_events():
                try:
                    await self.event_bus.publish(event)
                except Exception as e:
                    logger.warning(f"Failed to publish {event.event_type}: {e}")

    async def _mutate(
        self,
        operation: str,
        account_id: str,
        fn: Callable[[Account, _Outbox], T],
    ) -> OperationResult[T]:
        """Run a mutation under the account lock and convert failures."""
        try:
            self._get_account(account_id)
            async with self._lock_for(account_id):
                account = self._get_account(account_id)
                outbox = _Outbox()
                data = fn(account, outbox)
                await self._flush(outbox)
            return OperationResult.success(data)
        except TradingError as e:
            logger.warning(f"{operation} rejected for {account_id}: {e.kind.value} - {e.message}")
            return OperationResult.failure(e)
        except Exception as e:
            logger.exception(f"{operation} failed for {account_id}")
            return OperationResult.failure(
                InternalError(f"{operation} failed: {e}", operation=operation)
            )

    async def _read(
        self,
        operation: str,
        account_id: str,
        fn: Callable[[Account], T],
    ) -> OperationResult[T]:
        try:
            return OperationResult.success(fn(self._get_account(account_id)))
        except TradingError as e:
            return OperationResult.failure(e)
        except Exception as e:
            logger.exception(f"{operation} failed for {account_id}")
            return OperationResult.failure(
                InternalError(f"{operation} failed: {e}", operation=operation)
            )

    # =========================================================================
    # Internal bookkeeping (always called under the account lock)
    # =========================================================================

    def _settle(self, account: Account, outbox: _Outbox) -> RiskEvaluation:
        """Recompute the account after a ledger change and act on rule outcomes."""
        evaluation = self.risk.recompute(account)

        for violation in evaluation.violations:
            outbox.violations.append(violation)
            if violation.violation_type == ViolationType.MAX_DRAWDOWN:
                outbox.events.append(RiskEvent(
                    event_type=EventType.RISK_LIMIT_BREACHED,
                    account_id=account.account_id,
                    risk_type=ViolationType.MAX_DRAWDOWN.value,
                    current_value=float(account.current_drawdown),
                    limit_value=float(account.max_drawdown),
                    action_taken="breach",
                ))
            else:
                outbox.events.append(RiskEvent(
                    event_type=EventType.DAILY_LIMIT_WARNING,
                    account_id=account.account_id,
                    risk_type=ViolationType.DAILY_DRAWDOWN.value,
                    current_value=float(account.daily_drawdown_used),
                    limit_value=float(account.daily_drawdown),
                    action_taken="warning",
                ))

        if evaluation.target_reached:
            outbox.events.append(RiskEvent(
                event_type=EventType.TARGET_REACHED,
                priority=EventPriority.NORMAL,
                account_id=account.account_id,
                risk_type="profit_target",
                current_value=float(account.profit),
                limit_value=float(account.profit_target),
                action_taken="flag",
            ))

        if account.phase.is_terminal and (
            self.ledger.get_open_positions(account.account_id)
            or self.orders.pending(account_id=account.account_id)
        ):
            self._liquidate(account, outbox)

        outbox.account(account)
        return evaluation

    def _liquidate(
        self,
        account: Account,
        outbox: _Outbox,
        cancel_pending: bool = True,
    ) -> LiquidationReport:
        """Close every open position at the current mark, optionally cancelling pending orders first."""
        if cancel_pending:
            for order in self.orders.pending(account_id=account.account_id):
                outbox.order(self.orders.mark_cancelled(order), EventType.ORDER_CANCELLED)

        def price_for(position: Position) -> Decimal:
            return self.quotes.get(position.symbol).mark_price(position.side)

        reason = CloseReason.LIQUIDATION if account.phase.is_terminal else CloseReason.MANUAL
        report, trades = self.ledger.close_all(account, price_for, reason)
        for trade in trades:
            outbox.position(self.ledger.get_position(trade.position_id), EventType.POSITION_CLOSED, reason)
            outbox.trade(trade)

        self.risk.recompute(account)
        if report.failed:
            logger.error(
                f"Liquidation of {account.account_id} incomplete: "
                f"{len(report.failed)} positions left open"
            )
        else:
            logger.info(
                f"Liquidated {account.account_id}: closed {len(report.closed)} positions, "
                f"realized {report.realized_profit}"
            )
        return report

    def _close(
        self,
        account: Account,
        position: Position,
        price: Decimal,
        reason: CloseReason,
        outbox: _Outbox,
    ) -> Trade:
        _, trade = self.ledger.close(account, position.position_id, price, reason)
        outbox.position(position, EventType.POSITION_CLOSED, reason)
        outbox.trade(trade)
        return trade

    def _fill_triggered(self, account: Account, quote: Quote, outbox: _Outbox) -> None:
        """Fill pending orders on the quote's symbol whose trigger was reached."""
        for order in self.orders.pending(symbol=quote.symbol, account_id=account.account_id):
            # An earlier fill in this loop may have cancelled this order as a sibling
            if not order.is_pending or not order.is_triggered_by(quote):
                continue

            position = self.validator.fill_pending(account, order)
            if position is None:
                outbox.order(order, EventType.ORDER_REJECTED)
                continue

            outbox.order(order, EventType.ORDER_FILLED)
            for sibling in self.oco.on_leg_filled(order):
                outbox.order(sibling, EventType.ORDER_CANCELLED)

            self.ledger.mark_to_market(quote.symbol, quote.bid, quote.ask, account.account_id)
            outbox.position(position, EventType.POSITION_OPENED)
            self._settle(account, outbox)

    def _apply_quote(self, account: Account, quote: Quote, outbox: _Outbox) -> None:
        touched = self.ledger.mark_to_market(quote.symbol, quote.bid, quote.ask, account.account_id)

        for position in touched:
            reason = self.ledger.exit_reason(position)
            if reason is None:
                outbox.position(position, EventType.POSITION_UPDATED)
                continue
            logger.info(f"{reason.value} hit for {position.position_id} at {position.current_price}")
            self._close(account, position, position.current_price, reason, outbox)

        self._settle(account, outbox)
        if account.is_tradeable:
            self._fill_triggered(account, quote, outbox)

    # =========================================================================
    # Quote ingestion
    # =========================================================================

    async def on_quote(
        self,
        symbol: str,
        bid: Decimal,
        ask: Decimal,
        timestamp: Optional[datetime] = None,
    ) -> OperationResult[Dict[str, Any]]:
        """
        Ingest a tick: mark positions, run SL/TP exits and pending-order
        triggers, then re-evaluate each affected account.
        """
        try:
            instrument = self.symbols.get(symbol)
            quote = self.quotes.update(instrument.ticker, bid, ask, timestamp)
        except TradingError as e:
            return OperationResult.failure(e)
        except Exception as e:
            logger.exception(f"on_quote failed for {symbol}")
            return OperationResult.failure(InternalError(f"on_quote failed: {e}", operation="on_quote"))

        affected = self.ledger.accounts_holding(quote.symbol)
        affected.update(o.account_id for o in self.orders.pending(symbol=quote.symbol))

        async def apply(account_id: str) -> OperationResult:
            return await self._mutate(
                "on_quote",
                account_id,
                lambda account, outbox: self._apply_quote(account, quote, outbox),
            )

        results = await asyncio.gather(*(apply(a) for a in sorted(affected)))
        failed = [r.error.to_dict() for r in results if not r.ok]

        return OperationResult.success({
            "symbol": quote.symbol,
            "bid": quote.bid,
            "ask": quote.ask,
            "mid": quote.mid,
            "spread": quote.spread,
            "accounts": len(affected),
            "failures": failed,
        })

    # =========================================================================
    # Accounts
    # =========================================================================

    async def provision_account(
        self,
        user_id: str,
        challenge_type: ChallengeType = ChallengeType.STANDARD,
        account_size: Optional[Decimal] = None,
        profit_target_pct: Optional[Decimal] = None,
        max_drawdown_pct: Optional[Decimal] = None,
        daily_drawdown_pct: Optional[Decimal] = None,
        account_number: Optional[str] = None,
    ) -> OperationResult[Account]:
        """Open a new challenge account, defaults taken from settings."""
        try:
            rules = ChallengeRules(
                challenge_type=challenge_type,
                account_size=_or_default(account_size, self.config.default_starting_balance),
                profit_target_pct=_or_default(profit_target_pct, self.config.default_profit_target_pct),
                max_drawdown_pct=_or_default(max_drawdown_pct, self.config.default_max_drawdown_pct),
                daily_drawdown_pct=_or_default(daily_drawdown_pct, self.config.default_daily_drawdown_pct),
            )
            account = self.risk.provision(user_id, rules, account_number)
            self.accounts[account.account_id] = account

            outbox = _Outbox()
            outbox.account(account)
            await self._flush(outbox)
            return OperationResult.success(account)
        except TradingError as e:
            return OperationResult.failure(e)
        except Exception as e:
            logger.exception("provision_account failed")
            return OperationResult.failure(InternalError(f"provision_account failed: {e}"))

    def list_accounts(self, user_id: Optional[str] = None, include_deleted: bool = False) -> List[Account]:
        return [
            a for a in self.accounts.values()
            if (user_id is None or a.user_id == user_id) and (include_deleted or not a.is_deleted)
        ]

    async def get_account_stats(self, user_id: Optional[str] = None) -> OperationResult[AccountStats]:
        """Counts and money totals over the user's live accounts."""
        try:
            stats = AccountStats()
            for account in self.list_accounts(user_id=user_id):
                stats.total_accounts += 1
                if not account.phase.is_terminal:
                    stats.active_accounts += 1
                if account.phase == AccountPhase.FUNDED:
                    stats.funded_accounts += 1
                elif account.phase == AccountPhase.BREACHED:
                    stats.breached_accounts += 1
                if account.profit > 0:
                    stats.profitable_accounts += 1
                stats.total_balance += account.balance
                stats.total_equity += account.equity
                stats.total_profit += account.profit
            return OperationResult.success(stats)
        except Exception as e:
            logger.exception("get_account_stats failed")
            return OperationResult.failure(
                InternalError(f"get_account_stats failed: {e}", operation="get_account_stats")
            )

    async def get_account_snapshot(self, account_id: str) -> OperationResult[Account]:
        """Balance, equity, margin and drawdown figures as of the last mutation."""
        return await self._read("get_account_snapshot", account_id, lambda account: account)

    async def get_violations(self, account_id: str) -> OperationResult[List[AccountViolation]]:
        return await self._read(
            "get_violations",
            account_id,
            lambda account: sorted(account.violations, key=lambda v: v.created_at, reverse=True),
        )

    async def advance_phase(self, account_id: str) -> OperationResult[Account]:
        """Administrator action: move a target-reaching account to its next phase."""
        def run(account: Account, outbox: _Outbox) -> Account:
            self.risk.advance_phase(account)
            outbox.account(account)
            return account

        return await self._mutate("advance_phase", account_id, run)

    async def delete_account(self, account_id: str) -> OperationResult[Account]:
        """Soft delete: flatten the account, then hide it. Rows are never removed."""
        def run(account: Account, outbox: _Outbox) -> Account:
            if not account.is_deleted:
                self._liquidate(account, outbox)
                account.deleted_at = utcnow()
                outbox.account(account)
                logger.info(f"Account soft-deleted: {account_id}")
            return account

        return await self._mutate("delete_account", account_id, run)

    # =========================================================================
    # Orders
    # =========================================================================

    async def submit_order(
        self,
        account_id: str,
        request: OrderRequest,
    ) -> OperationResult[Dict[str, Any]]:
        """
        Validate and place an order.

        Market orders fill immediately and return the opened position;
        limit/stop orders rest until a quote reaches their trigger.
        """
        def run(account: Account, outbox: _Outbox) -> Dict[str, Any]:
            order, position = self.validator.submit(account, request)
            if position is not None:
                outbox.order(order, EventType.ORDER_FILLED)
                outbox.position(position, EventType.POSITION_OPENED)
                quote = self.quotes.get(order.symbol)
                self.ledger.mark_to_market(quote.symbol, quote.bid, quote.ask, account.account_id)
            else:
                outbox.order(order, EventType.ORDER_PLACED)
            self._settle(account, outbox)
            return {"order": order, "position": position}

        return await self._mutate("submit_order", account_id, run)

    async def submit_oco_order(
        self,
        account_id: str,
        symbol: str,
        side: OrderSide,
        volume: Decimal,
        spec: OCOPairSpec,
        time_in_force: TimeInForce = TimeInForce.GTC,
        comment: Optional[str] = None,
    ) -> OperationResult[OCOGroup]:
        """Place a stop-loss / take-profit pair; either both legs rest or neither."""
        def run(account: Account, outbox: _Outbox) -> OCOGroup:
            group = self.oco.create_pair(account, symbol, side, volume, spec, time_in_force, comment)
            for order in group.orders:
                outbox.order(order, EventType.ORDER_PLACED)
            return group

        return await self._mutate("submit_oco_order", account_id, run)

    async def submit_ocooco_order(
        self,
        account_id: str,
        symbol: str,
        side: OrderSide,
        volume: Decimal,
        primary: OCOPairSpec,
        secondary: OCOPairSpec,
        time_in_force: TimeInForce = TimeInForce.GTC,
        comment: Optional[str] = None,
    ) -> OperationResult[OCOGroup]:
        """Place two independent OCO pairs under one group id."""
        def run(account: Account, outbox: _Outbox) -> OCOGroup:
            group = self.oco.create_nested(
                account, symbol, side, volume, primary, secondary, time_in_force, comment
            )
            for order in group.orders:
                outbox.order(order, EventType.ORDER_PLACED)
            return group

        return await self._mutate("submit_ocooco_order", account_id, run)

    async def cancel_order(self, account_id: str, order_id: str) -> OperationResult[List[Order]]:
        """Cancel a pending order; an OCO leg takes its pending siblings with it."""
        def run(account: Account, outbox: _Outbox) -> List[Order]:
            order = self.orders.get(order_id)
            if order.account_id != account.account_id:
                raise OrderNotFound(f"Order not found: {order_id}", order_id=order_id)

            if order.parent_order_id:
                cancelled = self.oco.cancel_leg(order)
            else:
                cancelled = [self.orders.mark_cancelled(order)]

            for o in cancelled:
                outbox.order(o, EventType.ORDER_CANCELLED)
            logger.info(f"Cancelled {[o.order_id for o in cancelled]} on {account_id}")
            return cancelled

        return await self._mutate("cancel_order", account_id, run)

    async def cancel_oco_group(self, account_id: str, group_id: str) -> OperationResult[Dict[str, Any]]:
        """Cancel every pending leg of a group; returns how many were cancelled."""
        def run(account: Account, outbox: _Outbox) -> Dict[str, Any]:
            group = self.oco.resolve_group(group_id)
            if group.account_id != account.account_id:
                raise GroupNotFound(f"OCO group not found: {group_id}", group_id=group_id)

            cancelled = self.oco.cancel_group(group_id)
            for o in cancelled:
                outbox.order(o, EventType.ORDER_CANCELLED)
            return {
                "group_id": group_id,
                "cancelled": len(cancelled),
                "status": self.oco.resolve_group(group_id).status,
            }

        return await self._mutate("cancel_oco_group", account_id, run)

    async def get_orders(
        self,
        account_id: str,
        status: Optional[OrderStatus] = None,
    ) -> OperationResult[List[Order]]:
        return await self._read(
            "get_orders", account_id, lambda account: self.orders.for_account(account.account_id, status)
        )

    async def get_order(self, account_id: str, order_id: str) -> OperationResult[Order]:
        def run(account: Account) -> Order:
            order = self.orders.get(order_id)
            if order.account_id != account.account_id:
                raise OrderNotFound(f"Order not found: {order_id}", order_id=order_id)
            return order

        return await self._read("get_order", account_id, run)

    async def get_oco_groups(self, account_id: str) -> OperationResult[List[OCOGroup]]:
        return await self._read(
            "get_oco_groups", account_id, lambda account: self.oco.get_groups(account.account_id)
        )

    # =========================================================================
    # Positions
    # =========================================================================

    def _owned_position(self, account: Account, position_id: str) -> Position:
        position = self.ledger.get_position(position_id)
        if position.account_id != account.account_id:
            raise PositionNotFound(f"Position not found: {position_id}", position_id=position_id)
        return position

    async def modify_position(
        self,
        account_id: str,
        position_id: str,
        stop_loss: Optional[Decimal] = None,
        take_profit: Optional[Decimal] = None,
    ) -> OperationResult[Position]:
        def run(account: Account, outbox: _Outbox) -> Position:
            self._owned_position(account, position_id)
            position = self.ledger.modify(position_id, stop_loss, take_profit)
            outbox.position(position, EventType.POSITION_UPDATED)
            return position

        return await self._mutate("modify_position", account_id, run)

    async def close_position(
        self,
        account_id: str,
        position_id: str,
        price: Optional[Decimal] = None,
    ) -> OperationResult[Dict[str, Any]]:
        """Close at the given price, or at the current mark (ask for longs, bid for shorts)."""
        def run(account: Account, outbox: _Outbox) -> Dict[str, Any]:
            position = self._owned_position(account, position_id)
            close_price = price
            if close_price is None and position.is_open:
                close_price = self.quotes.get(position.symbol).mark_price(position.side)
            trade = self._close(account, position, close_price, CloseReason.MANUAL, outbox)
            self._settle(account, outbox)
            return {"position": position, "trade": trade}

        return await self._mutate("close_position", account_id, run)

    async def close_all_positions(self, account_id: str) -> OperationResult[LiquidationReport]:
        """
        Close every open position of the account.

        Positions that cannot be priced are reported in the result; calling
        again retries only those.
        """
        def run(account: Account, outbox: _Outbox) -> LiquidationReport:
            report = self._liquidate(account, outbox, cancel_pending=account.phase.is_terminal)
            self._settle(account, outbox)
            return report

        return await self._mutate("close_all_positions", account_id, run)

    async def get_open_positions(self, account_id: str) -> OperationResult[List[Position]]:
        return await self._read(
            "get_open_positions",
            account_id,
            lambda account: self.ledger.get_open_positions(account.account_id),
        )

    async def get_positions(
        self,
        account_id: str,
        status: Optional[PositionStatus] = None,
    ) -> OperationResult[List[Position]]:
        """Positions of the account, oldest first; all statuses when `status` is None."""
        return await self._read(
            "get_positions",
            account_id,
            lambda account: self.ledger.get_positions(account.account_id, status),
        )

    async def get_position(self, account_id: str, position_id: str) -> OperationResult[Position]:
        return await self._read(
            "get_position",
            account_id,
            lambda account: self._owned_position(account, position_id),
        )

    # =========================================================================
    # Trades
    # =========================================================================

    async def get_trade_history(
        self,
        account_id: str,
        symbol: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> OperationResult[List[Trade]]:
        return await self._read(
            "get_trade_history",
            account_id,
            lambda account: self.recorder.get_trades(account.account_id, symbol, limit, offset),
        )

    async def get_trade_stats(self, account_id: str) -> OperationResult[TradeStats]:
        return await self._read(
            "get_trade_stats", account_id, lambda account: self.recorder.get_stats(account.account_id)
        )


# =============================================================================
# Service accessor
# =============================================================================

_service: Optional[TradingService] = None


def get_trading_service() -> TradingService:
    """Get or create the process trading service."""
    global _service
    if _service is None:
        _service = TradingService()
    return _service


def set_trading_service(service: Optional[TradingService]) -> None:
    """Install the service built at startup (or clear it at shutdown)."""
    global _service
    _service = service


def create_trading_service(
    config: Optional[TradingSettings] = None,
    event_bus: Optional[EventBus] = None,
    journal: Optional[TradeJournal] = None,
) -> TradingService:
    """Factory function to create a trading service."""
    return TradingService(config=config, event_bus=event_bus, journal=journal)

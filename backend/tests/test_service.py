"""
Tests for the Trading Service.

Covers the operations as a client drives them: order submission, quote
ticks, SL/TP exits, OCO resolution, liquidation, phase advances, event
publication and per-account serialization.
"""

import asyncio
import random
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from conftest import D, market, tick
from propdesk.core.errors import ErrorKind
from propdesk.core.events import EventType, TickEvent
from propdesk.execution.models import (
    AccountPhase,
    CloseReason,
    LegRole,
    OCOGroupStatus,
    OCOLeg,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionStatus,
    ViolationSeverity,
    ViolationType,
)
from propdesk.execution.oco import OCOPairSpec
from propdesk.execution.validator import OrderRequest


def published(bus) -> list:
    return [call.args[0].event_type for call in bus.publish.call_args_list]


async def buy(service, account, volume="1.0", **kwargs):
    result = await service.submit_order(account.account_id, market(volume=volume, **kwargs))
    return result.unwrap()["position"]


# =============================================================================
# Accounts
# =============================================================================

class TestAccounts:
    """Provisioning, listing and snapshots."""

    @pytest.mark.asyncio
    async def test_provision_defaults(self, service, account):
        assert account.balance == D("25000")
        assert account.phase == AccountPhase.CHALLENGE_1
        assert service.list_accounts() == [account]

    @pytest.mark.asyncio
    async def test_list_by_user(self, service, account, small_account):
        assert service.list_accounts(user_id="user-2") == [small_account]

    @pytest.mark.asyncio
    async def test_unknown_account(self, service):
        result = await service.get_account_snapshot("ACC-NOPE")
        assert not result.ok
        assert result.error_kind == ErrorKind.ACCOUNT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_snapshot_after_fill(self, service, account):
        await buy(service, account)
        snapshot = (await service.get_account_snapshot(account.account_id)).unwrap()
        assert snapshot.balance == D("25000")
        assert snapshot.equity == D("24980")
        assert snapshot.used_margin == D("1000")
        assert snapshot.free_margin == D("23980")

    @pytest.mark.asyncio
    async def test_soft_delete_liquidates(self, service, account):
        await buy(service, account)
        result = await service.delete_account(account.account_id)
        assert result.ok
        assert account.deleted_at is not None
        assert service.ledger.get_open_positions(account.account_id) == []
        assert service.list_accounts() == []
        assert service.list_accounts(include_deleted=True) == [account]

        rejected = await service.submit_order(account.account_id, market())
        assert rejected.error_kind == ErrorKind.ACCOUNT_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_explicit_zero_rule_kept(self, service):
        """A zero percent rule is not replaced by the configured default."""
        account = (await service.provision_account("user-3", profit_target_pct=D("0"))).unwrap()
        assert account.profit_target == D("0")
        assert account.max_drawdown == D("10")

    @pytest.mark.asyncio
    async def test_account_stats(self, service, account, small_account):
        await buy(service, account)
        await service.provision_account("user-1", account_size=D("100000"))
        gone = (await service.provision_account("user-1")).unwrap()
        await service.delete_account(gone.account_id)

        stats = (await service.get_account_stats("user-1")).unwrap()
        assert stats.total_accounts == 2
        assert stats.active_accounts == 2
        assert stats.profitable_accounts == 0
        assert stats.total_balance == D("125000")
        assert stats.total_equity == D("124980")
        assert stats.total_profit == D("-20")

        everyone = (await service.get_account_stats()).unwrap()
        assert everyone.total_accounts == 3

    @pytest.mark.asyncio
    async def test_account_stats_count_breached(self, service, account):
        service.risk.breach(account)
        stats = (await service.get_account_stats("user-1")).unwrap()
        assert stats.total_accounts == 1
        assert stats.active_accounts == 0
        assert stats.breached_accounts == 1


# =============================================================================
# Orders
# =============================================================================

class TestOrderSubmission:
    """Market and pending order flow."""

    @pytest.mark.asyncio
    async def test_market_buy(self, service, account):
        result = await service.submit_order(account.account_id, market())
        assert result.ok
        order = result.data["order"]
        position = result.data["position"]
        assert order.status == OrderStatus.FILLED
        assert position.open_price == D("1.0854")
        assert position.current_price == D("1.0852")
        assert position.profit == D("-20")

    @pytest.mark.asyncio
    async def test_insufficient_margin(self, service, small_account):
        result = await service.submit_order(small_account.account_id, market())
        assert result.error_kind == ErrorKind.INSUFFICIENT_MARGIN
        assert result.error.details["required"] == D("1000")
        assert result.error.details["available"] == D("500")
        assert len(service.orders) == 0

    @pytest.mark.asyncio
    async def test_missing_quote(self, service, account):
        result = await service.submit_order(account.account_id, market(symbol="AUDUSD"))
        assert result.error_kind == ErrorKind.QUOTE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_buy_limit_fills_on_tick(self, service, account):
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0800"))
        order = (await service.submit_order(account.account_id, request)).unwrap()["order"]
        assert order.is_pending

        await tick(service, "EURUSD", "1.0799", "1.0801")
        assert order.is_pending

        await tick(service, "EURUSD", "1.0797", "1.0799")
        assert order.status == OrderStatus.FILLED
        position = service.ledger.get_open_positions(account.account_id)[0]
        assert position.open_price == D("1.0800")
        assert position.current_price == D("1.0799")

    @pytest.mark.asyncio
    async def test_buy_stop_fills_with_slippage(self, service, account):
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.STOP, stop_price=D("1.0900"))
        await service.submit_order(account.account_id, request)
        await tick(service, "EURUSD", "1.0899", "1.0901")
        position = service.ledger.get_open_positions(account.account_id)[0]
        assert position.open_price == D("1.0902")

    @pytest.mark.asyncio
    async def test_pending_fill_rejected_without_margin(self, service):
        account = (await service.provision_account("user-3", account_size=D("1500"))).unwrap()
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0800"))
        order = (await service.submit_order(account.account_id, request)).unwrap()["order"]
        await buy(service, account)

        await tick(service, "EURUSD", "1.0797", "1.0799")
        assert order.status == OrderStatus.REJECTED
        assert len(service.ledger.get_open_positions(account.account_id)) == 1

    @pytest.mark.asyncio
    async def test_cancel_order(self, service, account):
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0800"))
        order = (await service.submit_order(account.account_id, request)).unwrap()["order"]

        cancelled = (await service.cancel_order(account.account_id, order.order_id)).unwrap()
        assert [o.order_id for o in cancelled] == [order.order_id]

        again = await service.cancel_order(account.account_id, order.order_id)
        assert again.error_kind == ErrorKind.ORDER_NOT_PENDING

    @pytest.mark.asyncio
    async def test_cancel_filled_order(self, service, account):
        result = await service.submit_order(account.account_id, market())
        cancel = await service.cancel_order(account.account_id, result.data["order"].order_id)
        assert cancel.error_kind == ErrorKind.ORDER_NOT_PENDING

    @pytest.mark.asyncio
    async def test_cancel_foreign_order(self, service, account, small_account):
        request = OrderRequest("EURUSD", OrderSide.BUY, D("0.1"), OrderType.LIMIT, limit_price=D("1.0800"))
        order = (await service.submit_order(small_account.account_id, request)).unwrap()["order"]
        result = await service.cancel_order(account.account_id, order.order_id)
        assert result.error_kind == ErrorKind.ORDER_NOT_FOUND
        assert order.is_pending

    @pytest.mark.asyncio
    async def test_get_orders_by_status(self, service, account):
        await buy(service, account)
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0800"))
        await service.submit_order(account.account_id, request)

        pending = (await service.get_orders(account.account_id, OrderStatus.PENDING)).unwrap()
        assert len(pending) == 1
        assert len((await service.get_orders(account.account_id)).unwrap()) == 2

    @pytest.mark.asyncio
    async def test_get_single_order(self, service, account, small_account):
        position = await buy(service, account)
        order = (await service.get_order(account.account_id, position.order_id)).unwrap()
        assert order.status == OrderStatus.FILLED

        foreign = await service.get_order(small_account.account_id, position.order_id)
        assert foreign.error_kind == ErrorKind.ORDER_NOT_FOUND

        unknown = await service.get_order(account.account_id, "ORD-NOPE")
        assert unknown.error_kind == ErrorKind.ORDER_NOT_FOUND


# =============================================================================
# Positions
# =============================================================================

class TestPositions:
    """Exits, modification and manual close."""

    @pytest.mark.asyncio
    async def test_stop_loss_hit(self, service, account):
        await buy(service, account, stop_loss=D("1.0800"))
        await tick(service, "EURUSD", "1.0798", "1.0800")

        trade = (await service.get_trade_history(account.account_id)).unwrap()[0]
        assert trade.close_reason == CloseReason.STOP_LOSS
        assert trade.close_price == D("1.0800")
        assert trade.profit == D("-540")
        assert account.balance == D("24460")

    @pytest.mark.asyncio
    async def test_take_profit_hit_on_short(self, service, account):
        request = market(side=OrderSide.SELL, take_profit=D("1.0800"))
        await service.submit_order(account.account_id, request)
        await tick(service, "EURUSD", "1.0799", "1.0801")

        trade = (await service.get_trade_history(account.account_id)).unwrap()[0]
        assert trade.close_reason == CloseReason.TAKE_PROFIT
        assert trade.profit == D("490")

    @pytest.mark.asyncio
    async def test_modify_position(self, service, account):
        position = await buy(service, account)
        result = await service.modify_position(
            account.account_id, position.position_id, stop_loss=D("1.0820")
        )
        assert result.unwrap().stop_loss == D("1.0820")
        assert position.take_profit is None

    @pytest.mark.asyncio
    async def test_close_at_mark(self, service, account):
        position = await buy(service, account)
        result = (await service.close_position(account.account_id, position.position_id)).unwrap()
        assert result["trade"].close_price == D("1.0852")
        assert result["trade"].close_reason == CloseReason.MANUAL
        assert account.balance == D("24980")
        assert account.used_margin == D("0")

    @pytest.mark.asyncio
    async def test_close_twice(self, service, account):
        position = await buy(service, account)
        await service.close_position(account.account_id, position.position_id, D("1.0900"))
        again = await service.close_position(account.account_id, position.position_id, D("1.0900"))
        assert again.error_kind == ErrorKind.POSITION_NOT_OPEN
        assert account.balance == D("25460")

    @pytest.mark.asyncio
    async def test_close_without_quote(self, service, account):
        position = await buy(service, account)
        service.quotes.clear()
        result = await service.close_position(account.account_id, position.position_id)
        assert result.error_kind == ErrorKind.QUOTE_UNAVAILABLE
        assert position.is_open

    @pytest.mark.asyncio
    async def test_close_all_keeps_pending_orders(self, service, account):
        await buy(service, account)
        await buy(service, account, volume="0.5")
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0800"))
        order = (await service.submit_order(account.account_id, request)).unwrap()["order"]

        report = (await service.close_all_positions(account.account_id)).unwrap()
        assert len(report.closed) == 2
        assert report.complete
        assert service.ledger.get_open_positions(account.account_id) == []
        assert order.is_pending

    @pytest.mark.asyncio
    async def test_foreign_position(self, service, account, small_account):
        position = await buy(service, small_account, volume="0.1")
        result = await service.close_position(account.account_id, position.position_id)
        assert result.error_kind == ErrorKind.POSITION_NOT_FOUND

        lookup = await service.get_position(account.account_id, position.position_id)
        assert lookup.error_kind == ErrorKind.POSITION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_get_position(self, service, account):
        position = await buy(service, account)
        found = (await service.get_position(account.account_id, position.position_id)).unwrap()
        assert found is position

        unknown = await service.get_position(account.account_id, "POS-NOPE")
        assert unknown.error_kind == ErrorKind.POSITION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_positions_by_status(self, service, account):
        first = await buy(service, account)
        second = await buy(service, account, volume="0.5")
        await service.close_position(account.account_id, first.position_id, D("1.0900"))

        closed = (await service.get_positions(account.account_id, PositionStatus.CLOSED)).unwrap()
        assert [p.position_id for p in closed] == [first.position_id]

        still_open = (await service.get_positions(account.account_id, PositionStatus.OPEN)).unwrap()
        assert [p.position_id for p in still_open] == [second.position_id]

        every = (await service.get_positions(account.account_id)).unwrap()
        assert len(every) == 2


# =============================================================================
# OCO
# =============================================================================

class TestOCOFlow:
    """OCO groups driven by quotes."""

    @pytest.mark.asyncio
    async def test_take_profit_leg_fills(self, service, account):
        group = (await service.submit_oco_order(
            account.account_id, "EURUSD", OrderSide.BUY, D("1"), OCOPairSpec(D("20"), D("40"))
        )).unwrap()
        sl = group.leg(OCOLeg.PRIMARY, LegRole.STOP_LOSS)
        tp = group.leg(OCOLeg.PRIMARY, LegRole.TAKE_PROFIT)
        assert (sl.trigger_price, tp.trigger_price) == (D("1.0832"), D("1.0892"))

        await tick(service, "EURUSD", "1.0891", "1.0893")
        assert tp.status == OrderStatus.FILLED
        assert tp.fill_price == D("1.0892")
        assert sl.status == OrderStatus.CANCELLED

        groups = (await service.get_oco_groups(account.account_id)).unwrap()
        assert groups[0].status == OCOGroupStatus.PARTIALLY_FILLED

    @pytest.mark.asyncio
    async def test_cancel_one_leg(self, service, account):
        group = (await service.submit_oco_order(
            account.account_id, "EURUSD", OrderSide.BUY, D("1"), OCOPairSpec(D("20"), D("40"))
        )).unwrap()
        cancelled = (await service.cancel_order(account.account_id, group.orders[0].order_id)).unwrap()
        assert len(cancelled) == 2
        assert service.oco.resolve_group(group.group_id).status == OCOGroupStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failed_group_leaves_no_orders(self, service, account):
        result = await service.submit_oco_order(
            account.account_id, "EURUSD", OrderSide.BUY, D("1"),
            OCOPairSpec(D("20"), D("40"), tp_price=D("-1")),
        )
        assert result.error_kind == ErrorKind.GROUP_CREATION_FAILED
        assert result.error.details["leg"] == "primary:tp"
        assert (await service.get_orders(account.account_id)).unwrap() == []

    @pytest.mark.asyncio
    async def test_ocooco_resolves_pairs_independently(self, service, account):
        group = (await service.submit_ocooco_order(
            account.account_id, "EURUSD", OrderSide.BUY, D("1"),
            OCOPairSpec(D("20"), D("40")),
            OCOPairSpec(D("20"), D("60")),
        )).unwrap()

        await tick(service, "EURUSD", "1.0891", "1.0893")
        assert group.leg(OCOLeg.PRIMARY, LegRole.TAKE_PROFIT).status == OrderStatus.FILLED
        assert group.leg(OCOLeg.PRIMARY, LegRole.STOP_LOSS).status == OrderStatus.CANCELLED
        assert group.leg(OCOLeg.SECONDARY, LegRole.STOP_LOSS).is_pending
        assert group.leg(OCOLeg.SECONDARY, LegRole.TAKE_PROFIT).is_pending

    @pytest.mark.asyncio
    async def test_cancel_group(self, service, account):
        group = (await service.submit_oco_order(
            account.account_id, "EURUSD", OrderSide.BUY, D("1"), OCOPairSpec(D("20"), D("40"))
        )).unwrap()
        result = (await service.cancel_oco_group(account.account_id, group.group_id)).unwrap()
        assert result["cancelled"] == 2
        assert result["status"] == OCOGroupStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_foreign_group(self, service, account, small_account):
        group = (await service.submit_oco_order(
            small_account.account_id, "EURUSD", OrderSide.BUY, D("0.1"), OCOPairSpec(D("20"), D("40"))
        )).unwrap()
        result = await service.cancel_oco_group(account.account_id, group.group_id)
        assert result.error_kind == ErrorKind.GROUP_NOT_FOUND


# =============================================================================
# Risk
# =============================================================================

class TestRiskRules:
    """Breach, daily warning and phase advance through the service."""

    @pytest.mark.asyncio
    async def test_breach_on_close_liquidates_rest(self, service, account):
        first = await buy(service, account)
        await buy(service, account)

        await service.close_position(account.account_id, first.position_id, D("1.0596"))

        assert account.phase == AccountPhase.BREACHED
        assert account.breached_at is not None
        assert service.ledger.get_open_positions(account.account_id) == []
        assert account.balance == D("22400")

        violations = (await service.get_violations(account.account_id)).unwrap()
        assert violations[0].violation_type == ViolationType.MAX_DRAWDOWN
        assert violations[0].severity == ViolationSeverity.CRITICAL

        trades = (await service.get_trade_history(account.account_id)).unwrap()
        reasons = sorted(t.close_reason.value for t in trades)
        assert reasons == ["liquidation", "manual"]

    @pytest.mark.asyncio
    async def test_breach_on_tick(self, service, account, mock_event_bus):
        await buy(service, account)
        request = OrderRequest("EURUSD", OrderSide.BUY, D("1"), OrderType.LIMIT, limit_price=D("1.0500"))
        order = (await service.submit_order(account.account_id, request)).unwrap()["order"]

        await tick(service, "EURUSD", "1.0598", "1.0600")

        assert account.phase == AccountPhase.BREACHED
        assert account.balance == D("22460")
        assert order.status == OrderStatus.CANCELLED
        assert EventType.RISK_LIMIT_BREACHED in published(mock_event_bus)

        rejected = await service.submit_order(account.account_id, market())
        assert rejected.error_kind == ErrorKind.ACCOUNT_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_daily_warning_once(self, service, account, mock_event_bus):
        await buy(service, account)
        await tick(service, "EURUSD", "1.0702", "1.0704")
        assert account.phase == AccountPhase.CHALLENGE_1
        assert account.daily_warning_issued

        await tick(service, "EURUSD", "1.0700", "1.0702")
        warnings = [e for e in published(mock_event_bus) if e == EventType.DAILY_LIMIT_WARNING]
        assert len(warnings) == 1
        assert len(account.violations) == 1

    @pytest.mark.asyncio
    async def test_advance_gating(self, service, account):
        position = await buy(service, account)
        await tick(service, "EURUSD", "1.1108", "1.1110")
        assert account.target_reached

        blocked = await service.advance_phase(account.account_id)
        assert blocked.error_kind == ErrorKind.INVALID_PHASE_TRANSITION

        await service.close_position(account.account_id, position.position_id)
        advanced = (await service.advance_phase(account.account_id)).unwrap()
        assert advanced.phase == AccountPhase.CHALLENGE_2
        assert advanced.balance == D("25000")
        assert not advanced.target_reached

        again = await service.advance_phase(account.account_id)
        assert again.error_kind == ErrorKind.INVALID_PHASE_TRANSITION

    @pytest.mark.asyncio
    async def test_run_daily_reset(self, service, account):
        assert await service.run_daily_reset() == 0
        later = datetime(2099, 1, 1, tzinfo=timezone.utc)
        assert await service.run_daily_reset(later) == 1


# =============================================================================
# Quotes, events and journal
# =============================================================================

class TestQuoteIngestion:
    """Tick fan-out and boundary behaviour."""

    @pytest.mark.asyncio
    async def test_tick_reports_affected_accounts(self, service, account):
        await buy(service, account)
        result = (await tick(service, "EURUSD", "1.0860", "1.0862")).unwrap()
        assert result["accounts"] == 1
        assert result["failures"] == []

        other = (await tick(service, "GBPUSD", "1.2660", "1.2662")).unwrap()
        assert other["accounts"] == 0

    @pytest.mark.asyncio
    async def test_invalid_tick(self, service):
        result = await tick(service, "EURUSD", "1.0860", "1.0850")
        assert result.error_kind == ErrorKind.INVALID_QUOTE

        unknown = await tick(service, "NOPE", "1", "2")
        assert unknown.error_kind == ErrorKind.INVALID_SYMBOL

    @pytest.mark.asyncio
    async def test_naive_timestamp_after_aware_quote(self, service, account):
        """Ticks without an offset are read as UTC and compared with aware ones."""
        position = await buy(service, account)

        older = await service.on_quote("EURUSD", D("1.0850"), D("1.0852"), datetime(2026, 1, 1, 12, 0))
        assert older.ok

        later = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=5)
        result = (await service.on_quote("EURUSD", D("1.0900"), D("1.0902"), later)).unwrap()
        assert result["accounts"] == 1
        assert result["mid"] == D("1.0901")
        assert result["spread"] == D("0.0002")
        assert service.quotes.peek("EURUSD").timestamp.tzinfo is not None
        assert position.current_price == D("1.0902")

    @pytest.mark.asyncio
    async def test_unexpected_tick_error_becomes_internal(self, service, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(service.quotes, "update", explode)
        result = await tick(service, "EURUSD", "1.0860", "1.0862")
        assert result.error_kind == ErrorKind.INTERNAL

    @pytest.mark.asyncio
    async def test_tick_event_from_bus(self, service, account):
        position = await buy(service, account)
        await service._on_tick_event(TickEvent(symbol="EURUSD", bid=1.0900, ask=1.0902))
        assert position.current_price == D("1.0902")
        assert position.profit == D("480")


class TestEventsAndJournal:
    """Publication and journal side effects."""

    @pytest.mark.asyncio
    async def test_market_fill_events(self, service, account, mock_event_bus):
        mock_event_bus.publish.reset_mock()
        await buy(service, account)
        assert published(mock_event_bus) == [
            EventType.ORDER_FILLED,
            EventType.POSITION_OPENED,
            EventType.ACCOUNT_UPDATED,
        ]

    @pytest.mark.asyncio
    async def test_close_events(self, service, account, mock_event_bus):
        position = await buy(service, account)
        mock_event_bus.publish.reset_mock()
        await service.close_position(account.account_id, position.position_id)
        assert published(mock_event_bus) == [
            EventType.POSITION_CLOSED,
            EventType.TRADE_RECORDED,
            EventType.ACCOUNT_UPDATED,
        ]

    @pytest.mark.asyncio
    async def test_journal_receives_changes(self, service, account, mock_journal):
        mock_journal.write.reset_mock()
        position = await buy(service, account)
        kwargs = mock_journal.write.call_args.kwargs
        assert list(kwargs["positions"]) == [position]
        assert list(kwargs["accounts"]) == [account]

    @pytest.mark.asyncio
    async def test_journal_failure_tolerated(self, service, account, mock_journal):
        mock_journal.write = AsyncMock(side_effect=Exception("database is locked"))
        result = await service.submit_order(account.account_id, market())
        assert result.ok
        assert len(service.ledger.get_open_positions(account.account_id)) == 1

    @pytest.mark.asyncio
    async def test_publish_failure_tolerated(self, service, account, mock_event_bus):
        mock_event_bus.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        result = await service.submit_order(account.account_id, market())
        assert result.ok

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self, service, account, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(service.validator, "submit", explode)
        result = await service.submit_order(account.account_id, market())
        assert result.error_kind == ErrorKind.INTERNAL


class TestLifecycle:
    """Start/stop of the background monitor and tick subscription."""

    @pytest.mark.asyncio
    async def test_start_stop(self, service, mock_event_bus):
        await service.start()
        assert service.is_running
        mock_event_bus.subscribe.assert_awaited_once_with(EventType.TICK_RECEIVED, service._on_tick_event)

        await service.stop()
        assert not service.is_running
        mock_event_bus.unsubscribe.assert_awaited_once()


# =============================================================================
# Concurrency & invariants
# =============================================================================

class TestConcurrency:
    """Per-account serialization."""

    @pytest.mark.asyncio
    async def test_concurrent_orders_respect_margin(self, service):
        account = (await service.provision_account("user-4", account_size=D("5500"))).unwrap()
        results = await asyncio.gather(*(
            service.submit_order(account.account_id, market()) for _ in range(10)
        ))

        filled = [r for r in results if r.ok]
        rejected = [r for r in results if not r.ok]
        assert len(filled) == 5
        assert len(rejected) == 5
        assert all(r.error_kind == ErrorKind.INSUFFICIENT_MARGIN for r in rejected)
        assert account.used_margin == D("5000")

    @pytest.mark.asyncio
    async def test_equity_identity_holds(self, service, account):
        """equity == balance + floating profit after any sequence of operations."""
        rng = random.Random(42)
        price = Decimal("1.0850")

        for _ in range(60):
            action = rng.choice(["buy", "sell", "close", "tick"])
            if action in ("buy", "sell"):
                side = OrderSide.BUY if action == "buy" else OrderSide.SELL
                await service.submit_order(account.account_id, market(side=side, volume="0.1"))
            elif action == "close":
                open_positions = service.ledger.get_open_positions(account.account_id)
                if open_positions:
                    await service.close_position(account.account_id, rng.choice(open_positions).position_id)
            else:
                price += Decimal(rng.randint(-30, 30)) * Decimal("0.0001")
                await service.on_quote("EURUSD", price, price + Decimal("0.0002"))

            floating = sum(
                (p.profit for p in service.ledger.get_open_positions(account.account_id)), Decimal("0")
            )
            assert account.equity == account.balance + floating
            assert account.used_margin == service.ledger.used_margin(account.account_id)

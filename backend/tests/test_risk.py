"""
Tests for the Account Risk Engine.
"""

import pytest
from datetime import datetime, time, timezone
from decimal import Decimal

from propdesk.core.errors import InvalidPhaseTransition
from propdesk.execution.ledger import PositionLedger
from propdesk.execution.models import (
    AccountPhase,
    ChallengeRules,
    Order,
    OrderSide,
    OrderType,
    ViolationSeverity,
    ViolationType,
)
from propdesk.execution.recorder import TradeRecorder
from propdesk.execution.risk import AccountRiskEngine, parse_reset_time
from propdesk.execution.symbols import SymbolRegistry


D = Decimal
UTC = timezone.utc


@pytest.fixture
def ledger():
    return PositionLedger(SymbolRegistry(), TradeRecorder())


@pytest.fixture
def engine(ledger):
    return AccountRiskEngine(ledger)


@pytest.fixture
def account(engine):
    return engine.provision("user-1", ChallengeRules())


def open_long(ledger, account, price="1.0854", volume="1.0"):
    order = Order(
        order_id="ORD-1",
        account_id=account.account_id,
        symbol="EURUSD",
        side=OrderSide.BUY,
        order_type=OrderType.MARKET,
        volume=D(volume),
    )
    return ledger.open_position(order, D(price), D(volume) * 1000)


def mark(ledger, ask):
    ask = D(ask)
    ledger.mark_to_market("EURUSD", ask - D("0.0002"), ask)


class TestProvisioning:
    """Tests for account provisioning."""

    def test_defaults(self, account):
        assert account.phase == AccountPhase.CHALLENGE_1
        assert account.balance == account.equity == D("25000")
        assert account.free_margin == D("25000")
        assert account.profit_target == D("2500")
        assert account.peak_equity == account.daily_start_equity == D("25000")
        assert len(account.account_number) == 8

    def test_custom_rules(self, engine):
        rules = ChallengeRules(account_size=D("100000"), profit_target_pct=D("8"))
        account = engine.provision("user-1", rules, account_number="PD-0001")
        assert account.profit_target == D("8000")
        assert account.account_number == "PD-0001"

    def test_parse_reset_time(self):
        assert parse_reset_time("17:00") == time(17, 0)


class TestRecompute:
    """Equity, margin and drawdown aggregation."""

    def test_equity_includes_floating_profit(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.0852")
        engine.recompute(account)
        assert account.equity == D("24980")
        assert account.used_margin == D("1000")
        assert account.free_margin == D("23980")
        assert account.profit == D("-20")

    def test_peak_tracks_highest_equity(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.0954")
        engine.recompute(account)
        assert account.peak_equity == D("26000")

        mark(ledger, "1.0854")
        engine.recompute(account)
        assert account.peak_equity == D("26000")
        assert account.current_drawdown == D("4")

    def test_breach_at_limit(self, engine, ledger, account):
        """Reaching exactly the max drawdown breaches."""
        open_long(ledger, account)
        mark(ledger, "1.0604")
        evaluation = engine.recompute(account)

        assert evaluation.breached
        assert account.phase == AccountPhase.BREACHED
        assert account.breached_at is not None
        violation = evaluation.violations[0]
        assert violation.violation_type == ViolationType.MAX_DRAWDOWN
        assert violation.severity == ViolationSeverity.CRITICAL
        assert violation.details["previous_phase"] == "challenge_1"

    def test_terminal_account_not_reevaluated(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.0604")
        engine.recompute(account)
        mark(ledger, "1.0504")
        evaluation = engine.recompute(account)
        assert not evaluation.violations
        assert len(account.violations) == 1

    def test_daily_warning_once_per_day(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.0704")
        evaluation = engine.recompute(account)
        assert evaluation.daily_warning
        assert not evaluation.breached
        assert account.daily_drawdown_used == D("6")
        assert account.violations[0].severity == ViolationSeverity.WARNING

        mark(ledger, "1.0702")
        assert not engine.recompute(account).daily_warning
        assert len(account.violations) == 1

    def test_target_flag(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.1354")
        assert engine.recompute(account).target_reached
        assert account.target_reached
        assert account.phase == AccountPhase.CHALLENGE_1
        # Only reported once
        assert not engine.recompute(account).target_reached


class TestDailyReset:
    """Daily period boundaries at 17:00 New York."""

    def test_last_boundary(self, engine):
        # 15:00 UTC on 5 March is 10:00 EST; last reset was 17:00 EST on 4 March
        now = datetime(2024, 3, 5, 15, 0, tzinfo=UTC)
        assert engine.last_reset_boundary(now) == datetime(2024, 3, 4, 22, 0, tzinfo=UTC)

    def test_boundary_follows_dst(self, engine):
        now = datetime(2024, 7, 1, 22, 0, tzinfo=UTC)
        assert engine.last_reset_boundary(now) == datetime(2024, 7, 1, 21, 0, tzinfo=UTC)

    def test_reset_only_after_boundary(self, engine, ledger):
        account = engine.provision("user-1", ChallengeRules(), now=datetime(2024, 3, 5, 15, 0, tzinfo=UTC))
        open_long(ledger, account)
        mark(ledger, "1.0754")
        engine.recompute(account, now=datetime(2024, 3, 5, 16, 0, tzinfo=UTC))
        assert account.daily_start_equity == D("25000")

        assert not engine.check_daily_reset(account, datetime(2024, 3, 5, 21, 0, tzinfo=UTC))
        assert engine.check_daily_reset(account, datetime(2024, 3, 5, 22, 30, tzinfo=UTC))
        assert account.daily_start_equity == D("24000")
        assert account.daily_drawdown_used == D("0")
        assert account.daily_reset_at == datetime(2024, 3, 5, 22, 0, tzinfo=UTC)

    def test_reset_rearms_warning(self, engine, ledger):
        account = engine.provision("user-1", ChallengeRules(), now=datetime(2024, 3, 5, 15, 0, tzinfo=UTC))
        open_long(ledger, account)
        mark(ledger, "1.0704")
        engine.recompute(account, now=datetime(2024, 3, 5, 16, 0, tzinfo=UTC))
        assert account.daily_warning_issued

        engine.check_daily_reset(account, datetime(2024, 3, 5, 22, 30, tzinfo=UTC))
        assert not account.daily_warning_issued


class TestPhaseTransitions:
    """Administrator phase advances."""

    def test_advance_requires_target(self, engine, account):
        with pytest.raises(InvalidPhaseTransition) as exc:
            engine.advance_phase(account)
        assert exc.value.message == "Profit target not reached"

    def test_advance_requires_flat_book(self, engine, ledger, account):
        open_long(ledger, account)
        mark(ledger, "1.1354")
        engine.recompute(account)
        with pytest.raises(InvalidPhaseTransition):
            engine.advance_phase(account)

    def test_full_progression(self, engine, ledger, account):
        position = open_long(ledger, account)
        ledger.close(account, position.position_id, D("1.1104"))
        engine.recompute(account)
        assert account.balance == D("27500")

        assert engine.advance_phase(account) == AccountPhase.CHALLENGE_2
        assert account.balance == account.equity == D("25000")
        assert not account.target_reached
        assert account.max_drawdown_used == D("0")

        account.target_reached = True
        assert engine.advance_phase(account) == AccountPhase.FUNDED
        assert account.funded_at is not None

        # Funded accounts close out without a target
        assert engine.advance_phase(account) == AccountPhase.COMPLETED
        assert account.completed_at is not None
        assert account.phase.is_terminal

    def test_no_transition_out_of_breached(self, engine, account):
        engine.breach(account)
        with pytest.raises(InvalidPhaseTransition):
            engine.advance_phase(account)

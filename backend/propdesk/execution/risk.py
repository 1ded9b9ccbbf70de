"""
Account Risk Engine

Aggregates ledger state into each account's balance, equity and margin
figures and evaluates the challenge rules:

- Max drawdown: equity decline from the highest equity seen in the current
  rule period, as a percent of the starting balance. Reaching the limit
  breaches the account (the caller then liquidates it).
- Daily drawdown: equity decline from the equity held at the last daily
  reset boundary (17:00 America/New_York by default). Reaching the limit
  records one warning per day.
- Profit target: flags the account as eligible to advance. The transition
  itself is an administrator action.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from zoneinfo import ZoneInfo

from loguru import logger

from propdesk.core.errors import InvalidPhaseTransition
from propdesk.execution.ledger import PositionLedger
from propdesk.execution.models import (
    HUNDRED,
    ZERO,
    Account,
    AccountPhase,
    AccountViolation,
    ChallengeRules,
    ViolationSeverity,
    ViolationType,
    new_id,
    utcnow,
)


@dataclass
class RiskEvaluation:
    """What changed during one recomputation."""
    account_id: str
    breached: bool = False
    daily_warning: bool = False
    target_reached: bool = False
    daily_reset: bool = False
    violations: List[AccountViolation] = field(default_factory=list)


def parse_reset_time(value: str) -> time:
    return datetime.strptime(value, "%H:%M").time()


class AccountRiskEngine:
    """Balance/equity/margin aggregation and challenge rule evaluation."""

    def __init__(
        self,
        ledger: PositionLedger,
        daily_reset_time: time = time(17, 0),
        daily_reset_timezone: str = "America/New_York",
    ):
        self.ledger = ledger
        self.daily_reset_time = daily_reset_time
        self.tz = ZoneInfo(daily_reset_timezone)

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    def provision(
        self,
        user_id: str,
        rules: ChallengeRules,
        account_number: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Account:
        """Open a challenge account at the start of phase one."""
        now = now or utcnow()
        account_id = new_id("ACC")
        account = Account(
            account_id=account_id,
            user_id=user_id,
            account_number=account_number or account_id.split("-", 1)[1][:8],
            challenge_type=rules.challenge_type,
            starting_balance=rules.account_size,
            profit_target=rules.profit_target,
            max_drawdown=rules.max_drawdown_pct,
            daily_drawdown=rules.daily_drawdown_pct,
            daily_reset_at=self.last_reset_boundary(now),
            challenge_started_at=now,
            created_at=now,
            updated_at=now,
        )
        logger.info(
            f"Account provisioned: {account.account_id} ({rules.challenge_type.value}) "
            f"size {rules.account_size} target {account.profit_target}"
        )
        return account

    # -------------------------------------------------------------------------
    # Daily period
    # -------------------------------------------------------------------------

    def last_reset_boundary(self, now: datetime) -> datetime:
        """Most recent daily reset at or before `now`, in UTC."""
        local = now.astimezone(self.tz)
        boundary = local.replace(
            hour=self.daily_reset_time.hour,
            minute=self.daily_reset_time.minute,
            second=0,
            microsecond=0,
        )
        if boundary > local:
            boundary -= timedelta(days=1)
        return boundary.astimezone(timezone.utc)

    def check_daily_reset(self, account: Account, now: Optional[datetime] = None) -> bool:
        """
        Start a new daily period when a boundary has passed.

        The baseline is the last equity known before this evaluation.
        """
        boundary = self.last_reset_boundary(now or utcnow())
        if account.daily_reset_at is not None and account.daily_reset_at >= boundary:
            return False

        account.daily_start_equity = account.equity
        account.daily_drawdown_used = ZERO
        account.daily_warning_issued = False
        account.daily_reset_at = boundary
        logger.debug(f"Daily reset for {account.account_id}: baseline {account.equity}")
        return True

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    def _percent_of_start(self, account: Account, amount: Decimal) -> Decimal:
        return amount / account.starting_balance * HUNDRED

    def recompute(self, account: Account, now: Optional[datetime] = None) -> RiskEvaluation:
        """Refresh the account figures from the ledger and evaluate the rules."""
        now = now or utcnow()
        evaluation = RiskEvaluation(account_id=account.account_id)
        evaluation.daily_reset = self.check_daily_reset(account, now)

        account.used_margin = self.ledger.used_margin(account.account_id)
        account.equity = account.balance + self.ledger.floating_profit(account.account_id)
        account.free_margin = account.equity - account.used_margin
        account.profit = account.equity - account.starting_balance
        account.profit_percent = self._percent_of_start(account, account.profit)
        account.updated_at = now

        if account.phase.is_terminal or account.is_deleted:
            return evaluation

        if account.equity > account.peak_equity:
            account.peak_equity = account.equity

        account.current_drawdown = self._percent_of_start(
            account, max(ZERO, account.peak_equity - account.equity)
        )
        account.max_drawdown_used = max(account.max_drawdown_used, account.current_drawdown)

        daily_drawdown = self._percent_of_start(
            account, max(ZERO, account.daily_start_equity - account.equity)
        )
        account.daily_drawdown_used = max(account.daily_drawdown_used, daily_drawdown)

        if account.current_drawdown >= account.max_drawdown:
            evaluation.violations.append(self.breach(account, now))
            evaluation.breached = True
            return evaluation

        if daily_drawdown >= account.daily_drawdown and not account.daily_warning_issued:
            violation = self._violation(
                account,
                ViolationType.DAILY_DRAWDOWN,
                ViolationSeverity.WARNING,
                f"Daily drawdown {daily_drawdown:.2f}% reached limit {account.daily_drawdown}%",
                now,
                drawdown=daily_drawdown,
                limit=account.daily_drawdown,
                baseline_equity=account.daily_start_equity,
                equity=account.equity,
            )
            account.daily_warning_issued = True
            evaluation.daily_warning = True
            evaluation.violations.append(violation)
            logger.warning(f"Daily drawdown limit reached on {account.account_id}: {violation.description}")

        if (
            account.phase.is_challenge
            and not account.target_reached
            and account.profit >= account.profit_target
        ):
            account.target_reached = True
            evaluation.target_reached = True
            logger.info(
                f"Profit target reached on {account.account_id}: "
                f"{account.profit} >= {account.profit_target}"
            )

        return evaluation

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _violation(
        self,
        account: Account,
        violation_type: ViolationType,
        severity: ViolationSeverity,
        description: str,
        now: datetime,
        **details,
    ) -> AccountViolation:
        violation = AccountViolation(
            violation_id=new_id("VIO"),
            account_id=account.account_id,
            violation_type=violation_type,
            severity=severity,
            description=description,
            details={k: str(v) for k, v in details.items()},
            created_at=now,
        )
        account.violations.append(violation)
        return violation

    def breach(self, account: Account, now: Optional[datetime] = None) -> AccountViolation:
        """Terminal transition on a max drawdown violation."""
        now = now or utcnow()
        previous = account.phase
        account.phase = AccountPhase.BREACHED
        account.breached_at = now

        violation = self._violation(
            account,
            ViolationType.MAX_DRAWDOWN,
            ViolationSeverity.CRITICAL,
            f"Max drawdown {account.current_drawdown:.2f}% reached limit {account.max_drawdown}%",
            now,
            drawdown=account.current_drawdown,
            limit=account.max_drawdown,
            peak_equity=account.peak_equity,
            equity=account.equity,
            previous_phase=previous.value,
        )
        logger.warning(f"Account breached: {account.account_id} - {violation.description}")
        return violation

    def advance_phase(self, account: Account, now: Optional[datetime] = None) -> AccountPhase:
        """
        Move an account to its next phase.

        challenge_1 -> challenge_2 -> funded require the profit target and no
        open positions; each starts a fresh rule period on a balance reset to
        the account size. funded -> completed closes out the account.
        """
        now = now or utcnow()
        phase = account.phase

        if phase == AccountPhase.FUNDED:
            account.phase = AccountPhase.COMPLETED
            account.completed_at = now
            account.updated_at = now
            logger.info(f"Account completed: {account.account_id}")
            return account.phase

        if not phase.is_challenge:
            raise InvalidPhaseTransition(
                f"No transition out of {phase.value}",
                account_id=account.account_id,
                phase=phase,
            )
        if not account.target_reached:
            raise InvalidPhaseTransition(
                "Profit target not reached",
                account_id=account.account_id,
                phase=phase,
                profit=account.profit,
                profit_target=account.profit_target,
            )
        if self.ledger.get_open_positions(account.account_id):
            raise InvalidPhaseTransition(
                "Close all positions before advancing",
                account_id=account.account_id,
                phase=phase,
            )

        if phase == AccountPhase.CHALLENGE_1:
            account.phase = AccountPhase.CHALLENGE_2
        else:
            account.phase = AccountPhase.FUNDED
            account.funded_at = now

        self._start_rule_period(account, now)
        logger.info(f"Account {account.account_id} advanced: {phase.value} -> {account.phase.value}")
        return account.phase

    def _start_rule_period(self, account: Account, now: datetime) -> None:
        account.balance = account.starting_balance
        account.equity = account.starting_balance
        account.used_margin = ZERO
        account.free_margin = account.starting_balance
        account.profit = ZERO
        account.profit_percent = ZERO
        account.peak_equity = account.equity
        account.daily_start_equity = account.equity
        account.daily_reset_at = self.last_reset_boundary(now)
        account.daily_warning_issued = False
        account.current_drawdown = ZERO
        account.max_drawdown_used = ZERO
        account.daily_drawdown_used = ZERO
        account.target_reached = False
        account.challenge_started_at = now
        account.updated_at = now

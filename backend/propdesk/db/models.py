"""
Journal Models
PropDesk Challenge Platform

Tables mirroring the in-memory bookkeeping for the dashboard and the
trade history pages:
- Accounts (snapshot, upserted)
- Orders
- Positions
- Trades (insert-only)
- Account violations
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from propdesk.db.base import Base


PRICE = Numeric(20, 8)
MONEY = Numeric(20, 4)
PERCENT = Numeric(12, 6)


class AccountRecord(Base):
    """Latest account snapshot."""
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_number: Mapped[str] = mapped_column(String(32), nullable=False)
    challenge_type: Mapped[str] = mapped_column(String(20), nullable=False)
    phase: Mapped[str] = mapped_column(String(20), nullable=False)

    starting_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    equity: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    used_margin: Mapped[Decimal] = mapped_column(MONEY, default=0)
    free_margin: Mapped[Decimal] = mapped_column(MONEY, default=0)
    profit: Mapped[Decimal] = mapped_column(MONEY, default=0)
    profit_percent: Mapped[Decimal] = mapped_column(PERCENT, default=0)
    profit_target: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    # Rules and usage, percent of starting balance
    max_drawdown: Mapped[Decimal] = mapped_column(PERCENT, nullable=False)
    daily_drawdown: Mapped[Decimal] = mapped_column(PERCENT, nullable=False)
    current_drawdown: Mapped[Decimal] = mapped_column(PERCENT, default=0)
    max_drawdown_used: Mapped[Decimal] = mapped_column(PERCENT, default=0)
    daily_drawdown_used: Mapped[Decimal] = mapped_column(PERCENT, default=0)
    target_reached: Mapped[bool] = mapped_column(Boolean, default=False)

    challenge_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    funded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_accounts_user", "user_id"),
    )


class OrderRecord(Base):
    """Order as last seen."""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    volume: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    limit_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    stop_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    sl: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    tp: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    filled_volume: Mapped[Decimal] = mapped_column(PRICE, default=0)
    fill_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    time_in_force: Mapped[str] = mapped_column(String(10), default="gtc")
    parent_order_id: Mapped[Optional[str]] = mapped_column(String(32))
    oco_leg: Mapped[Optional[str]] = mapped_column(String(10))
    leg_role: Mapped[Optional[str]] = mapped_column(String(5))
    comment: Mapped[Optional[str]] = mapped_column(Text)
    reject_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_orders_account_status", "account_id", "status"),
        Index("idx_orders_parent", "parent_order_id"),
    )


class PositionRecord(Base):
    """Position as last seen."""
    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    order_id: Mapped[str] = mapped_column(String(32), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    volume: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    open_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    current_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    close_price: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    sl: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    tp: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    swap: Mapped[Decimal] = mapped_column(MONEY, default=0)
    commission: Mapped[Decimal] = mapped_column(MONEY, default=0)
    profit: Mapped[Decimal] = mapped_column(MONEY, default=0)
    margin: Mapped[Decimal] = mapped_column(MONEY, default=0)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_positions_account_status", "account_id", "status"),
    )


class TradeRecord(Base):
    """Closed trade. Rows are never updated."""
    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    position_id: Mapped[str] = mapped_column(String(32), nullable=False)
    order_id: Mapped[str] = mapped_column(String(32), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    volume: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    open_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    close_price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    sl: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    tp: Mapped[Optional[Decimal]] = mapped_column(PRICE)
    commission: Mapped[Decimal] = mapped_column(MONEY, default=0)
    swap: Mapped[Decimal] = mapped_column(MONEY, default=0)
    profit: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    pips: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    close_reason: Mapped[str] = mapped_column(String(20), nullable=False)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_trades_account_closed", "account_id", "closed_at"),
    )


class ViolationRecord(Base):
    """Rule excursion recorded against an account."""
    __tablename__ = "account_violations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_violations_account", "account_id"),
    )

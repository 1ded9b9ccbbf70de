"""
Execution Module
PropDesk Challenge Platform

In-memory bookkeeping core:
- SymbolRegistry: static instrument metadata
- QuoteBook: latest bid/ask per instrument
- OrderBook / OrderValidator: order acceptance, pending orders, fills
- PositionLedger: mark-to-market, SL/TP exits, closes
- OCOGroupManager: paired and nested stop/limit groups
- AccountRiskEngine: equity, margin, drawdown rules, phase changes
- TradeRecorder: trade history and statistics

TradingService (propdesk.execution.service) ties them together behind
per-account locks.
"""

from propdesk.execution.ledger import PositionLedger, calculate_profit
from propdesk.execution.oco import OCOGroupManager, OCOPairSpec, pip_levels
from propdesk.execution.orders import OrderBook
from propdesk.execution.quotes import QuoteBook
from propdesk.execution.recorder import TradeRecorder
from propdesk.execution.risk import AccountRiskEngine, RiskEvaluation
from propdesk.execution.symbols import DEFAULT_SYMBOLS, SymbolRegistry
from propdesk.execution.validator import OrderRequest, OrderValidator


__all__ = [
    "PositionLedger",
    "calculate_profit",
    "OCOGroupManager",
    "OCOPairSpec",
    "pip_levels",
    "OrderBook",
    "QuoteBook",
    "TradeRecorder",
    "AccountRiskEngine",
    "RiskEvaluation",
    "DEFAULT_SYMBOLS",
    "SymbolRegistry",
    "OrderRequest",
    "OrderValidator",
]

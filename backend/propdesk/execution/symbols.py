"""
Symbol Registry

Static instrument metadata, loaded once at startup from the built-in
list or from a JSON file of the same shape.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger

from propdesk.core.errors import InvalidSymbol
from propdesk.execution.models import InstrumentClass, Symbol


def _symbol(
    ticker: str,
    name: str,
    instrument_class: InstrumentClass,
    pip_size: str,
    lot_size: str,
    min_volume: str,
    max_volume: str,
    tick_size: str,
    swap_long: str,
    swap_short: str,
    trading_hours: str = "24/5",
) -> Symbol:
    return Symbol(
        ticker=ticker,
        name=name,
        instrument_class=instrument_class,
        pip_size=Decimal(pip_size),
        lot_size=Decimal(lot_size),
        min_volume=Decimal(min_volume),
        max_volume=Decimal(max_volume),
        tick_size=Decimal(tick_size),
        swap_long=Decimal(swap_long),
        swap_short=Decimal(swap_short),
        trading_hours=trading_hours,
    )


FX = InstrumentClass.FOREX

DEFAULT_SYMBOLS: List[Symbol] = [
    # Forex majors and crosses
    _symbol("EURUSD", "Euro vs US Dollar", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-6.5", "2.1"),
    _symbol("GBPUSD", "British Pound vs US Dollar", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-5.2", "1.5"),
    _symbol("USDJPY", "US Dollar vs Japanese Yen", FX, "0.01", "100000", "0.01", "100", "0.001", "-8.5", "3.2"),
    _symbol("AUDUSD", "Australian Dollar vs US Dollar", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-3.2", "0.5"),
    _symbol("USDCAD", "US Dollar vs Canadian Dollar", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-5.8", "2.2"),
    _symbol("USDCHF", "US Dollar vs Swiss Franc", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-8.2", "4.5"),
    _symbol("NZDUSD", "New Zealand Dollar vs US Dollar", FX, "0.0001", "100000", "0.01", "100", "0.00001", "-2.8", "0.2"),
    _symbol("EURGBP", "Euro vs British Pound", FX, "0.0001", "100000", "0.01", "50", "0.00001", "-3.5", "1.8"),
    # Crypto
    _symbol("BTCUSD", "Bitcoin vs US Dollar", InstrumentClass.CRYPTO, "1", "1", "0.01", "10", "0.01", "-0.05", "-0.05", "24/7"),
    _symbol("ETHUSD", "Ethereum vs US Dollar", InstrumentClass.CRYPTO, "0.01", "1", "0.1", "50", "0.001", "-0.05", "-0.05", "24/7"),
    # Indices
    _symbol("SPX500", "S&P 500 Index", InstrumentClass.INDICES, "0.1", "50", "0.1", "20", "0.01", "-15.5", "-8.2", "23/5"),
    # Commodities
    _symbol("XAUUSD", "Gold vs US Dollar", InstrumentClass.COMMODITIES, "0.01", "100", "0.01", "50", "0.001", "-12.5", "-8.2", "23/5"),
    _symbol("XAGUSD", "Silver vs US Dollar", InstrumentClass.COMMODITIES, "0.001", "5000", "0.1", "100", "0.0001", "-8.5", "-5.2", "23/5"),
]


class SymbolRegistry:
    """Lookup of tradeable instruments by ticker."""

    def __init__(self, symbols: Optional[Iterable[Symbol]] = None):
        self._symbols: Dict[str, Symbol] = {}
        for symbol in symbols if symbols is not None else DEFAULT_SYMBOLS:
            self._symbols[symbol.ticker.upper()] = symbol

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SymbolRegistry":
        """
        Load symbols from a JSON list of objects.

        Numeric fields may be strings or numbers; they are read through str()
        so pip sizes keep their exact decimal value.
        """
        raw: List[Dict[str, Any]] = json.loads(Path(path).read_text(encoding="utf-8"))
        symbols = []
        for item in raw:
            symbols.append(Symbol(
                ticker=item["ticker"],
                name=item.get("name", item["ticker"]),
                instrument_class=InstrumentClass(item.get("instrument_class", "forex")),
                pip_size=Decimal(str(item["pip_size"])),
                lot_size=Decimal(str(item["lot_size"])),
                min_volume=Decimal(str(item["min_volume"])),
                max_volume=Decimal(str(item["max_volume"])),
                tick_size=Decimal(str(item.get("tick_size", item["pip_size"]))),
                swap_long=Decimal(str(item.get("swap_long", 0))),
                swap_short=Decimal(str(item.get("swap_short", 0))),
                trading_hours=item.get("trading_hours", "24/5"),
                is_available=item.get("is_available", True),
            ))
        logger.info(f"Loaded {len(symbols)} symbols from {path}")
        return cls(symbols)

    def get(self, ticker: str) -> Symbol:
        """Return a tradeable symbol or raise InvalidSymbol."""
        symbol = self._symbols.get(ticker.upper())
        if symbol is None:
            raise InvalidSymbol(f"Unknown symbol: {ticker}", symbol=ticker)
        if not symbol.is_available:
            raise InvalidSymbol(f"Symbol not available for trading: {ticker}", symbol=ticker)
        return symbol

    def all(self) -> List[Symbol]:
        return list(self._symbols.values())

    def __contains__(self, ticker: str) -> bool:
        return ticker.upper() in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

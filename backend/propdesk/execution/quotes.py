"""
Quote Book

Latest bid/ask per instrument as delivered by the price feed.
A missing or stale quote fails fast with QuoteUnavailable.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional

from propdesk.core.errors import InvalidQuote, QuoteUnavailable
from propdesk.execution.models import Quote, utcnow


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; a naive value is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QuoteBook:
    """Per-process quote cache owned by the trading service."""

    def __init__(self, max_age_seconds: float = 0.0):
        self.max_age = timedelta(seconds=max_age_seconds) if max_age_seconds > 0 else None
        self._quotes: Dict[str, Quote] = {}

    def update(
        self,
        symbol: str,
        bid: Decimal,
        ask: Decimal,
        timestamp: Optional[datetime] = None,
    ) -> Quote:
        """Store a tick. Out-of-order ticks older than the held one are ignored."""
        if bid <= 0 or ask <= 0:
            raise InvalidQuote(f"Non-positive price for {symbol}", symbol=symbol, bid=bid, ask=ask)
        if bid > ask:
            raise InvalidQuote(f"Crossed quote for {symbol}", symbol=symbol, bid=bid, ask=ask)

        key = symbol.upper()
        quote = Quote(symbol=key, bid=bid, ask=ask, timestamp=as_utc(timestamp) if timestamp else utcnow())

        held = self._quotes.get(key)
        if held is not None and quote.timestamp < held.timestamp:
            return held

        self._quotes[key] = quote
        return quote

    def get(self, symbol: str, now: Optional[datetime] = None) -> Quote:
        """Return the current quote or raise QuoteUnavailable."""
        quote = self._quotes.get(symbol.upper())
        if quote is None:
            raise QuoteUnavailable(f"No quote available for {symbol}", symbol=symbol)

        if self.max_age is not None:
            age = (as_utc(now) if now else utcnow()) - quote.timestamp
            if age > self.max_age:
                raise QuoteUnavailable(
                    f"Quote for {symbol} is stale",
                    symbol=symbol,
                    age_seconds=round(age.total_seconds(), 3),
                )
        return quote

    def peek(self, symbol: str) -> Optional[Quote]:
        """Last quote regardless of age."""
        return self._quotes.get(symbol.upper())

    def snapshot(self) -> Dict[str, Quote]:
        return dict(self._quotes)

    def clear(self) -> None:
        self._quotes.clear()

"""
Event Bus - Redis Streams Implementation
PropDesk Challenge Platform

Carries the notifications the terminal and dashboard listen to
(order, position, account and risk updates) and, optionally, the
inbound quote ticks from the price feed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set, Type, Union
import asyncio
import json
import uuid

from loguru import logger
import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field

from propdesk.core.config import settings


# =============================================================================
# Event Types & Definitions
# =============================================================================

class EventType(str, Enum):
    """All event types in the system."""

    # Market Data Events
    TICK_RECEIVED = "tick.received"

    # Order Events
    ORDER_PLACED = "order.placed"
    ORDER_FILLED = "order.filled"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_REJECTED = "order.rejected"

    # Position Events
    POSITION_OPENED = "position.opened"
    POSITION_UPDATED = "position.updated"
    POSITION_CLOSED = "position.closed"

    # Account Events
    ACCOUNT_UPDATED = "account.updated"
    TRADE_RECORDED = "trade.recorded"

    # Risk Events
    RISK_LIMIT_BREACHED = "risk.limit_breached"
    DAILY_LIMIT_WARNING = "risk.daily_limit_warning"
    TARGET_REACHED = "risk.target_reached"

    # System Events
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class EventPriority(int, Enum):
    """Event priority levels for processing order."""
    CRITICAL = 0   # Breaches, forced liquidation
    HIGH = 1       # Fills and order updates
    NORMAL = 2     # Standard events
    LOW = 3        # Ticks, snapshots


# =============================================================================
# Base Event Models
# =============================================================================

class BaseEvent(BaseModel):
    """Base event model with common fields."""

    model_config = ConfigDict(use_enum_values=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    priority: EventPriority = EventPriority.NORMAL
    source: str = "propdesk"
    correlation_id: Optional[str] = None  # OCO group id, liquidation run id
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TickEvent(BaseEvent):
    """Bid/ask quote from the price feed."""
    event_type: EventType = EventType.TICK_RECEIVED
    priority: EventPriority = EventPriority.LOW

    symbol: str
    bid: float
    ask: float


class OrderEvent(BaseEvent):
    """Order lifecycle event."""
    event_type: EventType = EventType.ORDER_PLACED
    priority: EventPriority = EventPriority.HIGH

    order_id: str
    account_id: str
    symbol: str
    side: str  # buy, sell
    order_type: str  # market, limit, stop, stop_limit
    volume: float
    status: str
    price: Optional[float] = None
    parent_order_id: Optional[str] = None
    reject_reason: Optional[str] = None


class PositionEvent(BaseEvent):
    """Position update event."""
    event_type: EventType = EventType.POSITION_UPDATED

    position_id: str
    account_id: str
    symbol: str
    side: str  # long, short
    volume: float
    open_price: float
    current_price: float
    profit: float
    status: str
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    close_reason: Optional[str] = None


class TradeEvent(BaseEvent):
    """Closed trade appended to the history."""
    event_type: EventType = EventType.TRADE_RECORDED

    trade_id: str
    account_id: str
    position_id: str
    symbol: str
    side: str
    volume: float
    open_price: float
    close_price: float
    profit: float
    pips: float
    close_reason: str


class AccountEvent(BaseEvent):
    """Balance/equity/margin snapshot after a ledger change."""
    event_type: EventType = EventType.ACCOUNT_UPDATED

    account_id: str
    phase: str
    balance: float
    equity: float
    used_margin: float
    free_margin: float
    current_drawdown: float
    daily_drawdown_used: float


class RiskEvent(BaseEvent):
    """Challenge rule event."""
    event_type: EventType = EventType.RISK_LIMIT_BREACHED
    priority: EventPriority = EventPriority.CRITICAL

    account_id: str
    risk_type: str  # max_drawdown, daily_drawdown, profit_target
    current_value: float
    limit_value: float
    action_taken: str  # breach, warning, flag


class SystemEvent(BaseEvent):
    """System lifecycle event."""
    event_type: EventType = EventType.SYSTEM_STARTUP

    component: str
    status: str  # STARTED, STOPPED, ERROR
    details: Dict[str, Any] = Field(default_factory=dict)


# Concrete model per stream so consumers get the typed payload back
EVENT_MODELS: Dict[str, Type[BaseEvent]] = {
    EventType.TICK_RECEIVED.value: TickEvent,
    EventType.ORDER_PLACED.value: OrderEvent,
    EventType.ORDER_FILLED.value: OrderEvent,
    EventType.ORDER_CANCELLED.value: OrderEvent,
    EventType.ORDER_REJECTED.value: OrderEvent,
    EventType.POSITION_OPENED.value: PositionEvent,
    EventType.POSITION_UPDATED.value: PositionEvent,
    EventType.POSITION_CLOSED.value: PositionEvent,
    EventType.ACCOUNT_UPDATED.value: AccountEvent,
    EventType.TRADE_RECORDED.value: TradeEvent,
    EventType.RISK_LIMIT_BREACHED.value: RiskEvent,
    EventType.DAILY_LIMIT_WARNING.value: RiskEvent,
    EventType.TARGET_REACHED.value: RiskEvent,
    EventType.SYSTEM_STARTUP.value: SystemEvent,
    EventType.SYSTEM_SHUTDOWN.value: SystemEvent,
}


# =============================================================================
# Event Bus Implementation
# =============================================================================

EventHandler = Callable[[BaseEvent], Coroutine[Any, Any, None]]


def stream_key(prefix: str, event_type: Union[EventType, str]) -> str:
    """Stream key for an event type, e.g. ``pd:events:order.filled``."""
    return f"{prefix}{getattr(event_type, 'value', event_type)}"


class EventBus:
    """
    Redis Streams event bus.

    Every event type gets its own stream. Publishing is a capped XADD.
    Subscribers share one consumer loop that reads all subscribed streams
    through the configured consumer group and acknowledges each entry after
    its handlers ran, even if one of them raised.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        stream_prefix: Optional[str] = None,
        max_stream_length: Optional[int] = None,
        consumer_group: Optional[str] = None,
        block_ms: int = 1000,
        batch_size: int = 50,
    ):
        cfg = settings.redis
        self.redis_url = redis_url or settings.redis_url
        self.stream_prefix = stream_prefix or cfg.stream_prefix
        self.max_stream_length = max_stream_length or cfg.stream_max_len
        self.consumer_group = consumer_group or cfg.consumer_group
        self.consumer_name = f"{self.consumer_group}-{uuid.uuid4().hex[:6]}"
        self.block_ms = block_ms
        self.batch_size = batch_size

        self._redis: Optional[redis.Redis] = None
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._groups_ready: Set[str] = set()
        self._consumer: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    @property
    def is_consuming(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        logger.info(f"Event bus using {self.redis_url} (prefix {self.stream_prefix!r})")

    async def disconnect(self) -> None:
        await self._stop_consumer()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._groups_ready.clear()
            logger.info("Event bus disconnected")

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, event: BaseEvent) -> str:
        """Append ``event`` to its stream and return the entry id."""
        await self.connect()
        key = stream_key(self.stream_prefix, event.event_type)
        entry = {
            "event_type": str(getattr(event.event_type, "value", event.event_type)),
            "priority": str(int(event.priority)),
            "data": event.model_dump_json(),
        }
        entry_id = await self._redis.xadd(key, entry, maxlen=self.max_stream_length, approximate=True)
        logger.debug(f"{key} <- {event.event_id} ({entry_id})")
        return entry_id

    @staticmethod
    def decode(entry: Dict[str, str]) -> Optional[BaseEvent]:
        """Typed event for a stream entry, or None when the entry is malformed."""
        payload = entry.get("data")
        event_type = entry.get("event_type")
        if not payload or not event_type:
            return None
        return EVENT_MODELS.get(event_type, BaseEvent).model_validate(json.loads(payload))

    # -------------------------------------------------------------------------
    # Subscribing
    # -------------------------------------------------------------------------

    async def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type``; restarts the consumer if running."""
        key = stream_key(self.stream_prefix, event_type)
        self._handlers.setdefault(key, []).append(handler)
        logger.info(f"{handler.__name__} subscribed to {key}")
        if self.is_consuming:
            await self._restart_consumer()

    async def unsubscribe(self, event_type: EventType, handler: Optional[EventHandler] = None) -> None:
        """Drop ``handler`` (or all handlers) for ``event_type``."""
        key = stream_key(self.stream_prefix, event_type)
        remaining = [h for h in self._handlers.get(key, []) if handler is not None and h != handler]
        if remaining:
            self._handlers[key] = remaining
        else:
            self._handlers.pop(key, None)
        logger.info(f"Unsubscribed from {key}")
        if self.is_consuming:
            await self._restart_consumer()

    async def start_consuming(self) -> None:
        """Start the consumer loop over every subscribed stream."""
        await self.connect()
        if not self._handlers or self.is_consuming:
            return
        self._consumer = asyncio.create_task(self._consume(), name="event-bus-consumer")
        logger.info(f"Event bus consuming {len(self._handlers)} streams as {self.consumer_name}")

    async def _restart_consumer(self) -> None:
        await self._stop_consumer()
        await self.start_consuming()

    async def _stop_consumer(self) -> None:
        task, self._consumer = self._consumer, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _ensure_group(self, key: str) -> None:
        if key in self._groups_ready:
            return
        try:
            await self._redis.xgroup_create(key, self.consumer_group, id="0", mkstream=True)
        except redis.ResponseError as e:
            # Group already exists
            if "BUSYGROUP" not in str(e):
                raise
        self._groups_ready.add(key)

    async def _dispatch(self, key: str, entry_id: str, entry: Dict[str, str]) -> None:
        event = self.decode(entry)
        if event is None:
            logger.warning(f"Skipping malformed entry {entry_id} on {key}")
        else:
            for handler in list(self._handlers.get(key, [])):
                try:
                    await handler(event)
                except Exception:
                    logger.exception(f"{handler.__name__} failed on {key} entry {entry_id}")
        await self._redis.xack(key, self.consumer_group, entry_id)

    async def _consume(self) -> None:
        streams = {key: ">" for key in self._handlers}
        for key in streams:
            await self._ensure_group(key)

        while True:
            try:
                batches = await self._redis.xreadgroup(
                    groupname=self.consumer_group,
                    consumername=self.consumer_name,
                    streams=streams,
                    count=self.batch_size,
                    block=self.block_ms,
                )
            except redis.RedisError as e:
                logger.error(f"Event bus read failed: {e}")
                await asyncio.sleep(1)
                continue

            for key, entries in batches or []:
                for entry_id, entry in entries:
                    await self._dispatch(key, entry_id, entry)

    async def health_check(self) -> bool:
        try:
            await self.connect()
            return bool(await self._redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Event bus health check failed: {e}")
            return False


# =============================================================================
# Process-wide bus
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus_sync() -> EventBus:
    """The shared bus, created on first use but not connected."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def get_event_bus() -> EventBus:
    """The shared bus, connected."""
    bus = get_event_bus_sync()
    await bus.connect()
    return bus


async def shutdown_event_bus() -> None:
    global _event_bus
    if _event_bus is not None:
        await _event_bus.disconnect()
        _event_bus = None


__all__ = [
    "EventType",
    "EventPriority",
    "BaseEvent",
    "TickEvent",
    "OrderEvent",
    "PositionEvent",
    "TradeEvent",
    "AccountEvent",
    "RiskEvent",
    "SystemEvent",
    "EVENT_MODELS",
    "EventHandler",
    "EventBus",
    "stream_key",
    "get_event_bus",
    "get_event_bus_sync",
    "shutdown_event_bus",
]

"""
Order Book

In-memory store of orders. Only pending orders may change status;
filled, cancelled and rejected orders are final.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from propdesk.core.errors import OrderNotFound, OrderNotPending
from propdesk.execution.models import Order, OrderStatus, utcnow


class OrderBook:
    """Order store with status-transition guards."""

    def __init__(self):
        self._orders: Dict[str, Order] = {}

    def add(self, order: Order) -> Order:
        self._orders[order.order_id] = order
        return order

    def discard(self, order_id: str) -> None:
        """Drop an order that was never exposed (OCO rollback)."""
        self._orders.pop(order_id, None)

    def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order not found: {order_id}", order_id=order_id)
        return order

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _ensure_pending(self, order: Order) -> None:
        if order.status != OrderStatus.PENDING:
            raise OrderNotPending(
                f"Order {order.order_id} is {order.status.value}",
                order_id=order.order_id,
                status=order.status,
            )

    def mark_filled(self, order: Order, fill_price: Decimal, at: Optional[datetime] = None) -> Order:
        self._ensure_pending(order)
        now = at or utcnow()
        order.status = OrderStatus.FILLED
        order.filled_volume = order.volume
        order.fill_price = fill_price
        order.filled_at = now
        order.updated_at = now
        return order

    def mark_cancelled(self, order: Order) -> Order:
        self._ensure_pending(order)
        order.status = OrderStatus.CANCELLED
        order.updated_at = utcnow()
        return order

    def mark_rejected(self, order: Order, reason: str) -> Order:
        self._ensure_pending(order)
        order.status = OrderStatus.REJECTED
        order.reject_reason = reason
        order.updated_at = utcnow()
        return order

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def for_account(self, account_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        """Account orders, newest first."""
        orders = [
            o for o in self._orders.values()
            if o.account_id == account_id and (status is None or o.status == status)
        ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def pending(self, symbol: Optional[str] = None, account_id: Optional[str] = None) -> List[Order]:
        """Pending orders in creation order."""
        return [
            o for o in self._orders.values()
            if o.status == OrderStatus.PENDING
            and (symbol is None or o.symbol == symbol)
            and (account_id is None or o.account_id == account_id)
        ]

    def by_group(self, group_id: str) -> List[Order]:
        return [o for o in self._orders.values() if o.parent_order_id == group_id]

    def group_ids(self, account_id: str) -> List[str]:
        seen: Dict[str, None] = {}
        for order in self._orders.values():
            if order.account_id == account_id and order.parent_order_id:
                seen.setdefault(order.parent_order_id, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._orders)

"""
OCO Group Manager

One-cancels-other groups of pending orders. A simple OCO holds a stop-loss
leg and a take-profit leg under one group id; an OCOOCO holds two such
pairs (primary and secondary). Legs of the same pair are siblings: when
one fills or is cancelled, its pending siblings are cancelled with it.

Group status is never stored. It is derived from the member orders on
every read:

    any leg filled        -> partially_filled
    every leg cancelled   -> cancelled
    otherwise             -> active
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from loguru import logger

from propdesk.core.errors import GroupCreationFailed, GroupNotFound, TradingError
from propdesk.execution.models import (
    Account,
    LegRole,
    OCOGroup,
    OCOLeg,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    TimeInForce,
    TriggerDirection,
    new_id,
)
from propdesk.execution.orders import OrderBook
from propdesk.execution.quotes import QuoteBook
from propdesk.execution.validator import OrderRequest, OrderValidator


@dataclass
class OCOPairSpec:
    """Stop-loss / take-profit offsets of one pair, in pips."""
    sl_pips: Decimal
    tp_pips: Decimal
    sl_order_type: OrderType = OrderType.STOP
    tp_order_type: OrderType = OrderType.LIMIT
    sl_price: Optional[Decimal] = None  # absolute override of the computed SL level
    tp_price: Optional[Decimal] = None  # absolute override of the computed TP level
    sl_limit_price: Optional[Decimal] = None  # stop_limit SL legs only
    tp_stop_price: Optional[Decimal] = None  # stop_limit TP legs only

    @property
    def needs_quote(self) -> bool:
        return self.sl_price is None or self.tp_price is None


def pip_levels(
    side: OrderSide,
    reference: Decimal,
    pip_size: Decimal,
    sl_pips: Decimal,
    tp_pips: Decimal,
) -> Tuple[Decimal, Decimal]:
    """Absolute SL/TP prices from pip offsets around a reference price."""
    if side == OrderSide.BUY:
        return reference - sl_pips * pip_size, reference + tp_pips * pip_size
    return reference + sl_pips * pip_size, reference - tp_pips * pip_size


class OCOGroupManager:
    """Creates, resolves and cancels OCO groups."""

    def __init__(self, validator: OrderValidator, orders: OrderBook, quotes: QuoteBook):
        self.validator = validator
        self.orders = orders
        self.quotes = quotes

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _leg_requests(
        self,
        group_id: str,
        label: OCOLeg,
        symbol: str,
        side: OrderSide,
        volume: Decimal,
        spec: OCOPairSpec,
        time_in_force: TimeInForce,
        comment: Optional[str],
        prefix: str,
    ) -> List[OrderRequest]:
        instrument = self.validator.symbols.get(symbol)

        computed_sl = computed_tp = None
        if spec.needs_quote:
            reference = self.quotes.get(instrument.ticker).entry_price(side)
            computed_sl, computed_tp = pip_levels(
                side, reference, instrument.pip_size, spec.sl_pips, spec.tp_pips
            )
        sl_level = spec.sl_price if spec.sl_price is not None else computed_sl
        tp_level = spec.tp_price if spec.tp_price is not None else computed_tp

        falls = TriggerDirection.BELOW
        rises = TriggerDirection.ABOVE
        sl_direction, tp_direction = (falls, rises) if side == OrderSide.BUY else (rises, falls)

        sl_request = OrderRequest(
            symbol=instrument.ticker,
            side=side,
            volume=volume,
            order_type=spec.sl_order_type,
            stop_price=sl_level,
            limit_price=spec.sl_limit_price if spec.sl_order_type == OrderType.STOP_LIMIT else None,
            time_in_force=time_in_force,
            comment=comment or f"{prefix} SL",
            parent_order_id=group_id,
            oco_leg=label,
            leg_role=LegRole.STOP_LOSS,
            trigger_direction=sl_direction,
        )
        tp_request = OrderRequest(
            symbol=instrument.ticker,
            side=side,
            volume=volume,
            order_type=spec.tp_order_type,
            limit_price=tp_level,
            stop_price=spec.tp_stop_price if spec.tp_order_type == OrderType.STOP_LIMIT else None,
            time_in_force=time_in_force,
            comment=comment or f"{prefix} TP",
            parent_order_id=group_id,
            oco_leg=label,
            leg_role=LegRole.TAKE_PROFIT,
            trigger_direction=tp_direction,
        )
        return [sl_request, tp_request]

    def _create(
        self,
        account: Account,
        requests: List[OrderRequest],
        group_id: str,
    ) -> OCOGroup:
        """Accept every leg or none of them."""
        created: List[Order] = []
        for request in requests:
            try:
                order, _ = self.validator.submit(account, request)
            except TradingError as e:
                for order in created:
                    self.orders.discard(order.order_id)
                leg = f"{request.oco_leg.value}:{request.leg_role.value}"
                logger.warning(f"OCO group {group_id} rejected at leg {leg}: {e.message}")
                raise GroupCreationFailed(
                    f"OCO leg {leg} failed: {e.message}",
                    group_id=group_id,
                    leg=leg,
                    cause=e.kind,
                    cause_details=e.details,
                ) from e
            created.append(order)

        logger.info(f"OCO group created: {group_id} with {len(created)} legs")
        return OCOGroup(group_id=group_id, account_id=account.account_id, orders=created)

    def create_pair(
        self,
        account: Account,
        symbol: str,
        side: OrderSide,
        volume: Decimal,
        spec: OCOPairSpec,
        time_in_force: TimeInForce = TimeInForce.GTC,
        comment: Optional[str] = None,
    ) -> OCOGroup:
        """Create an SL/TP pair sharing a new group id."""
        group_id = new_id("OCO")
        requests = self._leg_requests(
            group_id, OCOLeg.PRIMARY, symbol, side, volume, spec, time_in_force, comment, "OCO"
        )
        return self._create(account, requests, group_id)

    def create_nested(
        self,
        account: Account,
        symbol: str,
        side: OrderSide,
        volume: Decimal,
        primary: OCOPairSpec,
        secondary: OCOPairSpec,
        time_in_force: TimeInForce = TimeInForce.GTC,
        comment: Optional[str] = None,
    ) -> OCOGroup:
        """Create two independent SL/TP pairs under one group id."""
        group_id = new_id("OCO")
        requests = self._leg_requests(
            group_id, OCOLeg.PRIMARY, symbol, side, volume, primary, time_in_force, comment,
            "OCOOCO primary",
        ) + self._leg_requests(
            group_id, OCOLeg.SECONDARY, symbol, side, volume, secondary, time_in_force, comment,
            "OCOOCO secondary",
        )
        return self._create(account, requests, group_id)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_group(self, group_id: str) -> OCOGroup:
        """Scan the member orders; the status is derived from them."""
        members = self.orders.by_group(group_id)
        if not members:
            raise GroupNotFound(f"OCO group not found: {group_id}", group_id=group_id)
        members.sort(key=lambda o: o.created_at)
        return OCOGroup(group_id=group_id, account_id=members[0].account_id, orders=members)

    def siblings(self, order: Order) -> List[Order]:
        """Pending legs of the same pair, excluding the order itself."""
        if not order.parent_order_id:
            return []
        return [
            o for o in self.orders.by_group(order.parent_order_id)
            if o.order_id != order.order_id
            and o.oco_leg == order.oco_leg
            and o.status == OrderStatus.PENDING
        ]

    def on_leg_filled(self, order: Order) -> List[Order]:
        """Cancel the pending siblings of a filled leg."""
        cancelled = [self.orders.mark_cancelled(o) for o in self.siblings(order)]
        if cancelled:
            logger.info(
                f"OCO {order.parent_order_id}: leg {order.order_id} filled, "
                f"cancelled {[o.order_id for o in cancelled]}"
            )
        return cancelled

    def cancel_leg(self, order: Order) -> List[Order]:
        """Cancel a pending leg together with its pending siblings."""
        siblings = self.siblings(order)
        cancelled = [self.orders.mark_cancelled(order)]
        cancelled.extend(self.orders.mark_cancelled(o) for o in siblings)
        return cancelled

    def cancel_group(self, group_id: str) -> List[Order]:
        """Cancel every pending leg; an already resolved group cancels nothing."""
        group = self.resolve_group(group_id)
        cancelled = [
            self.orders.mark_cancelled(o) for o in group.orders if o.status == OrderStatus.PENDING
        ]
        logger.info(f"OCO group {group_id}: cancelled {len(cancelled)} pending legs")
        return cancelled

    def get_groups(self, account_id: str) -> List[OCOGroup]:
        return [self.resolve_group(group_id) for group_id in self.orders.group_ids(account_id)]

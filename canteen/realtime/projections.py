"""
Order Service: Client session projections

Reference implementation of how a dashboard keeps its live view: seed from a
REST fetch, then merge newOrder / orderUpdate snapshots by order id. The
projections hold no authority over order state.
"""
from typing import Any, Iterable

from canteen.models.order import ACTIVE_STATUSES, TERMINAL_STATUSES
from canteen.realtime.notifier import NEW_ORDER, ORDER_UPDATE

_ACTIVE = {s.value for s in ACTIVE_STATUSES}
_TERMINAL = {s.value for s in TERMINAL_STATUSES}


class OrdersView:
    """Ordered collection of order snapshots, deduplicated by id."""

    handled_events: frozenset[str] = frozenset({ORDER_UPDATE})

    def __init__(self, orders: Iterable[dict[str, Any]] = ()):
        self._orders: dict[str, dict[str, Any]] = {}
        self.seed(orders)

    def seed(self, orders: Iterable[dict[str, Any]]) -> None:
        self._orders = {}
        for order in orders:
            if self.keeps(order):
                self._orders[order["id"]] = order

    @property
    def orders(self) -> list[dict[str, Any]]:
        return list(self._orders.values())

    def get(self, order_id: str) -> dict[str, Any] | None:
        return self._orders.get(order_id)

    def keeps(self, order: dict[str, Any]) -> bool:
        return True

    def apply(self, event: str, order: dict[str, Any]) -> bool:
        """Merge one realtime event; returns whether the view changed."""
        if event not in self.handled_events:
            return False
        current = self._orders.get(order["id"])
        if current is not None and self._is_stale(current, order):
            return False
        if not self.keeps(order):
            return self._orders.pop(order["id"], None) is not None
        self._orders[order["id"]] = order
        return True

    @staticmethod
    def _is_stale(current: dict[str, Any], incoming: dict[str, Any]) -> bool:
        # A terminal order never moves back to an active state.
        return current["status"] in _TERMINAL and incoming["status"] not in _TERMINAL


class StudentOrdersView(OrdersView):
    """Student dashboard: the student's full order history."""


class ManagerQueueView(OrdersView):
    """Manager queue: active orders only, newest arrivals appended."""

    handled_events = frozenset({NEW_ORDER, ORDER_UPDATE})

    def keeps(self, order: dict[str, Any]) -> bool:
        return order["status"] in _ACTIVE

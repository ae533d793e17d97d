"""
Order Service: Order lifecycle engine

The only component allowed to change an order. State machine:

  Pending   -> Approved | Disapproved | Cancelled
  Approved  -> Preparing | Cancelled
  Preparing -> Ready | Cancelled
  Ready     -> Completed
  Disapproved, Cancelled, Completed are terminal.

Each transition is one conditional UPDATE whose WHERE clause carries the
guard (owner, expected status, payment state). When no row matches, the
order is re-read only to explain the rejection; nothing is written.

After a successful write the populated snapshot is handed to the notifier
before the caller gets its response.
"""
import logging

from canteen.core.errors import Forbidden, InvalidOtp, InvalidTransition, NotFound, ValidationError
from canteen.core.otp import generate_otp
from canteen.core.security import Actor
from canteen.db.order_store import OrderStore
from canteen.models.order import ACTIVE_STATUSES, Order, OrderStatus, PaymentStatus
from canteen.models.user import Role
from canteen.realtime.notifier import OrderNotifier
from canteen.schemas.order import OrderSnapshot

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.APPROVED, OrderStatus.DISAPPROVED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.DISAPPROVED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
}

# Edges reachable through a plain status update; the rest have dedicated operations.
ADVANCE: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.APPROVED,
    OrderStatus.APPROVED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.PREPARING})
MANAGER_CANCELLABLE_STATUSES = frozenset({OrderStatus.APPROVED, OrderStatus.PREPARING})
PAYABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.APPROVED})


def _require_role(actor: Actor, role: Role) -> None:
    if actor.role is not role:
        raise Forbidden(f"Only a {role.value} can perform this action.")


def _require_reason(reason: str | None, message: str) -> str:
    if reason is None or not reason.strip():
        raise ValidationError(message)
    return reason.strip()


def parse_status(value: str | None) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status {value!r}.")


class OrderLifecycle:
    def __init__(self, store: OrderStore, notifier: OrderNotifier):
        self.store = store
        self.notifier = notifier

    # ── Commands ──────────────────────────────────────────────────────────────

    async def place_order(
        self, actor: Actor, lines: list[tuple[str, int]], manager_id: str | None = None
    ) -> OrderSnapshot:
        _require_role(actor, Role.STUDENT)
        manager_id = manager_id or actor.manager_id
        if not manager_id:
            raise ValidationError("Student has no associated canteen manager.")
        if not lines:
            raise ValidationError("Order must contain at least one item.")
        if any(quantity < 1 for _, quantity in lines):
            raise ValidationError("Item quantity must be at least 1.")

        order_id = await self.store.create(actor.id, manager_id, lines)
        snapshot = await self._snapshot(order_id)
        logger.info("Order %s placed by student %s for manager %s", order_id, actor.id, manager_id)
        await self.notifier.order_created(snapshot.model_dump(mode="json"))
        return snapshot

    async def cancel_by_student(self, actor: Actor, order_id: str) -> OrderSnapshot:
        _require_role(actor, Role.STUDENT)
        matched = await self.store.update(
            order_id,
            {"status": OrderStatus.CANCELLED, "can_cancel": False, "cancelled_by": "student"},
            Order.status.in_(ACTIVE_STATUSES),
            Order.payment_status != PaymentStatus.PAID,
            Order.can_cancel.is_(True),
            student_id=actor.id,
        )
        if not matched:
            order = await self.store.find(order_id)
            if order is None:
                raise NotFound("Order not found.")
            if order.student_id != actor.id:
                raise Forbidden("Order belongs to another student.")
            if order.payment_status is PaymentStatus.PAID:
                raise InvalidTransition("Cannot cancel a paid order.")
            raise InvalidTransition(f"Order cannot be cancelled (status: {order.status.value}).")
        return await self._changed(order_id, "cancelled by student")

    async def cancel_by_manager(
        self, actor: Actor, order_id: str, reason: str | None, cancelled_by: str | None = None
    ) -> OrderSnapshot:
        _require_role(actor, Role.MANAGER)
        reason = _require_reason(reason, "Cancellation reason required.")
        matched = await self.store.update(
            order_id,
            {
                "status": OrderStatus.CANCELLED,
                "can_cancel": False,
                "cancellation_reason": reason,
                "cancelled_by": (cancelled_by or "").strip() or "manager",
            },
            Order.status.in_(MANAGER_CANCELLABLE_STATUSES),
            Order.payment_status != PaymentStatus.PAID,
            manager_id=actor.id,
        )
        if not matched:
            await self._reject(order_id, actor, "Only unpaid Approved or Preparing orders can be cancelled")
        return await self._changed(order_id, "cancelled by manager")

    async def disapprove(self, actor: Actor, order_id: str, reason: str | None) -> OrderSnapshot:
        _require_role(actor, Role.MANAGER)
        reason = _require_reason(reason, "Disapproval reason required.")
        matched = await self.store.update(
            order_id,
            {
                "status": OrderStatus.DISAPPROVED,
                "can_cancel": False,
                "cancellation_reason": reason,
                "cancelled_by": "manager",
            },
            Order.status == OrderStatus.PENDING,
            manager_id=actor.id,
        )
        if not matched:
            await self._reject(order_id, actor, "Only Pending orders can be disapproved")
        return await self._changed(order_id, "disapproved")

    async def confirm_payment(self, actor: Actor, order_id: str) -> OrderSnapshot:
        """Mark the order Paid and Approved in one write."""
        _require_role(actor, Role.MANAGER)
        matched = await self.store.update(
            order_id,
            {"payment_status": PaymentStatus.PAID, "status": OrderStatus.APPROVED, "can_cancel": False},
            Order.status.in_(PAYABLE_STATUSES),
            Order.payment_status != PaymentStatus.PAID,
            manager_id=actor.id,
        )
        if not matched:
            await self._reject(order_id, actor, "Payment can only be confirmed once, on a Pending or Approved order")
        return await self._changed(order_id, "payment confirmed")

    async def advance(self, actor: Actor, order_id: str, target: str | None) -> OrderSnapshot:
        """Move the order one step along Pending -> Approved -> Preparing -> Ready."""
        _require_role(actor, Role.MANAGER)
        target_status = parse_status(target)
        order = await self.store.get(order_id, manager_id=actor.id)
        current = order.status

        if ADVANCE.get(current) is not target_status:
            if target_status is OrderStatus.COMPLETED and current is OrderStatus.READY:
                raise InvalidTransition("Ready orders are completed by verifying the pickup OTP.")
            raise InvalidTransition(f"Cannot move order from {current.value} to {target_status.value}.")

        values = {"status": target_status}
        if target_status not in CANCELLABLE_STATUSES:
            values["can_cancel"] = False
        if target_status is OrderStatus.READY and order.otp is None:
            values["otp"] = generate_otp()

        matched = await self.store.update(order_id, values, Order.status == current, manager_id=actor.id)
        if not matched:
            await self._reject(order_id, actor, f"Order is no longer {current.value}")
        return await self._changed(order_id, f"{current.value} -> {target_status.value}")

    async def verify_otp(self, actor: Actor, order_id: str, otp: str | None) -> OrderSnapshot:
        """Complete pickup when the supplied code equals the stored one."""
        _require_role(actor, Role.MANAGER)
        if not otp:
            raise ValidationError("OTP required.")
        matched = await self.store.update(
            order_id,
            {"status": OrderStatus.COMPLETED, "otp": None},
            Order.status == OrderStatus.READY,
            Order.otp == otp,
            manager_id=actor.id,
        )
        if not matched:
            order = await self.store.get(order_id, manager_id=actor.id)
            if order.status is not OrderStatus.READY:
                raise InvalidTransition("Order not ready.")
            logger.info("Order %s: pickup OTP rejected", order_id)
            raise InvalidOtp("Invalid OTP.")
        return await self._changed(order_id, "picked up")

    # ── Queries ───────────────────────────────────────────────────────────────

    async def get_order(self, actor: Actor, order_id: str) -> OrderSnapshot:
        if actor.is_student:
            order = await self.store.get(order_id, student_id=actor.id)
        else:
            order = await self.store.get(order_id, manager_id=actor.id)
        return OrderSnapshot.from_order(order)

    async def list_active(self, actor: Actor) -> list[OrderSnapshot]:
        _require_role(actor, Role.MANAGER)
        return [OrderSnapshot.from_order(o) for o in await self.store.list_active(actor.id)]

    async def list_orders(self, actor: Actor) -> list[OrderSnapshot]:
        return [OrderSnapshot.from_order(o) for o in await self.store.list_by_owner(actor.id, actor.role)]

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _snapshot(self, order_id: str) -> OrderSnapshot:
        return OrderSnapshot.from_order(await self.store.get(order_id))

    async def _changed(self, order_id: str, label: str) -> OrderSnapshot:
        snapshot = await self._snapshot(order_id)
        logger.info("Order %s: %s", order_id, label)
        await self.notifier.order_changed(snapshot.model_dump(mode="json"))
        return snapshot

    async def _reject(self, order_id: str, actor: Actor, message: str) -> None:
        order = await self.store.find(order_id, manager_id=actor.id)
        if order is None:
            raise NotFound("Order not found.")
        raise InvalidTransition(
            f"{message} (status: {order.status.value}, payment: {order.payment_status.value})."
        )

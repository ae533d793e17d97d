"""
Order Service: Order store

Keyed storage for orders. Every write the lifecycle engine issues goes through
update(), a single conditional statement:

  UPDATE orders SET ... WHERE id = :id [AND owner = :owner] AND <guards>

The guard is evaluated by the database against the committed row, so two
concurrent transitions on the same order cannot both pass on a stale read.
A zero row count means the guard lost; the caller decides why.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.errors import NotFound, ValidationError
from canteen.models.menu import MenuItem
from canteen.models.order import ACTIVE_STATUSES, Order, OrderItem, OrderStatus, PaymentStatus
from canteen.models.user import Role, User

logger = logging.getLogger(__name__)


def _scoped(stmt, student_id: str | None, manager_id: str | None):
    if student_id is not None:
        stmt = stmt.where(Order.student_id == student_id)
    if manager_id is not None:
        stmt = stmt.where(Order.manager_id == manager_id)
    return stmt


class OrderStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_items(self, menu_item_ids: Iterable[str]) -> dict[str, MenuItem]:
        ids = set(menu_item_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
        return {item.id: item for item in result.scalars().all()}

    async def create(self, student_id: str, manager_id: str, lines: list[tuple[str, int]]) -> str:
        """Persist a new Pending order. Item references are validated once, here."""
        menu = await self.resolve_items(menu_item_id for menu_item_id, _ in lines)

        missing = sorted({menu_item_id for menu_item_id, _ in lines} - menu.keys())
        if missing:
            raise ValidationError(f"Invalid menu items in order: {', '.join(missing)}")
        foreign = sorted(i for i, item in menu.items() if item.manager_id != manager_id)
        if foreign:
            raise ValidationError(f"Menu items not served by this canteen: {', '.join(foreign)}")

        order = Order(
            id=str(uuid.uuid4()),
            student_id=student_id,
            manager_id=manager_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            can_cancel=True,
        )
        order.items = [
            OrderItem(position=position, menu_item_id=menu_item_id, quantity=quantity)
            for position, (menu_item_id, quantity) in enumerate(lines)
        ]
        self.db.add(order)
        await self.db.commit()
        self.db.expunge(order)  # later reads load menu items fresh
        return order.id

    async def find(
        self, order_id: str, *, student_id: str | None = None, manager_id: str | None = None
    ) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(_scoped(stmt, student_id, manager_id))
        return result.scalar_one_or_none()

    async def get(
        self, order_id: str, *, student_id: str | None = None, manager_id: str | None = None
    ) -> Order:
        order = await self.find(order_id, student_id=student_id, manager_id=manager_id)
        if order is None:
            raise NotFound("Order not found.")
        return order

    async def update(
        self,
        order_id: str,
        values: dict[str, Any],
        *guards,
        student_id: str | None = None,
        manager_id: str | None = None,
    ) -> bool:
        """Apply values iff the row matches id, owner scope and every guard."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, *guards)
            .values(**values, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(_scoped(stmt, student_id, manager_id))
        if result.rowcount == 0:
            await self.db.rollback()
            return False
        await self.db.commit()
        return True

    async def list_active(self, manager_id: str) -> list[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.manager_id == manager_id, Order.status.in_(ACTIVE_STATUSES))
            .order_by(Order.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_by_owner(self, user_id: str, role: Role) -> list[Order]:
        owner = Order.student_id if role is Role.STUDENT else Order.manager_id
        result = await self.db.execute(
            select(Order).where(owner == user_id).order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def set_feedback(self, order_id: str, student_id: str, rating: int, comment: str | None) -> bool:
        """Attach feedback once, only to a Completed order of this student."""
        return await self.update(
            order_id,
            {"feedback_rating": rating, "feedback_comment": comment},
            Order.status == OrderStatus.COMPLETED,
            Order.feedback_rating.is_(None),
            student_id=student_id,
        )

    async def get_user(self, user_id: str) -> User | None:
        return await self.db.get(User, user_id)

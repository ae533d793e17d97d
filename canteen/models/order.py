"""
Order Service: Order DB models

[TRANSACTIONAL DATA] Orders are never deleted; terminal orders stay for
history, analytics and feedback.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import String, Integer, Boolean, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from canteen.db.database import Base
from canteen.models.menu import MenuItem


class OrderStatus(str, PyEnum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DISAPPROVED = "Disapproved"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


ACTIVE_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.APPROVED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
})
TERMINAL_STATUSES = frozenset({
    OrderStatus.DISAPPROVED,
    OrderStatus.CANCELLED,
    OrderStatus.COMPLETED,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_manager_status", "manager_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    manager_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PENDING, nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        default=PaymentStatus.PENDING, nullable=False,
    )
    can_cancel: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    otp: Mapped[str | None] = mapped_column(String(4), nullable=True)  # set only while Ready
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        order_by="OrderItem.position", lazy="selectin", cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status.value} payment={self.payment_status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    menu_item_id: Mapped[str] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    menu_item: Mapped[MenuItem] = relationship(lazy="joined")

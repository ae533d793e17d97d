"""
Order Service: Pydantic Schemas

Request bodies stay permissive on the fields the lifecycle engine validates
itself (reason, status, otp) so that both HTTP and direct callers get the same
domain errors.
"""
from datetime import datetime

from pydantic import BaseModel, Field

from canteen.models.order import Order, OrderStatus, PaymentStatus


class OrderItemRequest(BaseModel):
    menu_item_id: str = Field(..., min_length=1, examples=["item-001"])
    quantity: int = Field(..., ge=1, le=20)


class OrderRequest(BaseModel):
    manager_id: str | None = None
    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=50)


class ManagerCancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
    cancelled_by: str | None = Field(None, max_length=32)


class DisapproveRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str | None = None


class OtpRequest(BaseModel):
    otp: str | None = None


class FeedbackRequest(BaseModel):
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)


class MenuItemOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    price: int
    discount: int
    category: str
    is_special: bool

    model_config = {"from_attributes": True}


class OrderLine(BaseModel):
    menu_item: MenuItemOut
    quantity: int


class Feedback(BaseModel):
    rating: int | None = None
    comment: str | None = None


class OrderSnapshot(BaseModel):
    """The populated order as returned by the API and pushed to both rooms."""

    id: str
    student_id: str
    manager_id: str
    items: list[OrderLine]
    status: OrderStatus
    payment_status: PaymentStatus
    can_cancel: bool
    otp: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    feedback: Feedback | None = None
    total: int  # in paise
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderSnapshot":
        lines = [
            OrderLine(menu_item=MenuItemOut.model_validate(item.menu_item), quantity=item.quantity)
            for item in order.items
        ]
        feedback = None
        if order.feedback_rating is not None or order.feedback_comment:
            feedback = Feedback(rating=order.feedback_rating, comment=order.feedback_comment)
        return cls(
            id=order.id,
            student_id=order.student_id,
            manager_id=order.manager_id,
            items=lines,
            status=order.status,
            payment_status=order.payment_status,
            can_cancel=order.can_cancel,
            otp=order.otp,
            cancellation_reason=order.cancellation_reason,
            cancelled_by=order.cancelled_by,
            feedback=feedback,
            total=sum(item.menu_item.unit_price * item.quantity for item in order.items),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PaymentLinkResponse(BaseModel):
    order_id: str
    payment_status: PaymentStatus
    amount: str
    currency: str
    upi_link: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    dependencies: dict[str, str]

"""
Order Service: Orders API

Thin HTTP layer over the lifecycle engine. Role and ownership checks, guards
and broadcasts all happen in OrderLifecycle; domain errors are turned into
responses by the handlers in canteen.main.
"""
from fastapi import APIRouter, Depends, Response, status

from canteen.api.deps import get_actor, get_lifecycle, get_store
from canteen.core.security import Actor
from canteen.db.order_store import OrderStore
from canteen.schemas.order import (
    DisapproveRequest,
    ManagerCancelRequest,
    OrderRequest,
    OrderSnapshot,
    OtpRequest,
    PaymentLinkResponse,
    StatusUpdateRequest,
)
from canteen.services.lifecycle import OrderLifecycle
from canteen.services.payments import payment_link, render_qr_png

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderSnapshot, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: OrderRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Place an order (student). Emits newOrder to the manager and orderUpdate to the student."""
    lines = [(item.menu_item_id, item.quantity) for item in payload.items]
    return await lifecycle.place_order(actor, lines, manager_id=payload.manager_id)


@router.post("/cancel/{order_id}", response_model=OrderSnapshot)
async def cancel_by_student(
    order_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.cancel_by_student(actor, order_id)


@router.put("/cancel/{order_id}", response_model=OrderSnapshot)
async def cancel_by_manager(
    order_id: str,
    payload: ManagerCancelRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.cancel_by_manager(actor, order_id, payload.reason, payload.cancelled_by)


@router.put("/disapprove/{order_id}", response_model=OrderSnapshot)
async def disapprove(
    order_id: str,
    payload: DisapproveRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.disapprove(actor, order_id, payload.reason)


@router.put("/confirm-payment/{order_id}", response_model=OrderSnapshot)
async def confirm_payment(
    order_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Manual UPI reconciliation: sets paymentStatus=Paid and status=Approved together."""
    return await lifecycle.confirm_payment(actor, order_id)


@router.put("/update/{order_id}", response_model=OrderSnapshot)
async def update_status(
    order_id: str,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Advance the order one step. Entering Ready generates the pickup OTP."""
    return await lifecycle.advance(actor, order_id, payload.status)


@router.post("/verify-otp/{order_id}", response_model=OrderSnapshot)
async def verify_otp(
    order_id: str,
    payload: OtpRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.verify_otp(actor, order_id, payload.otp)


@router.get("/active", response_model=list[OrderSnapshot])
async def list_active(
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Manager queue seed: Pending, Approved, Preparing and Ready orders, oldest first."""
    return await lifecycle.list_active(actor)


@router.get("", response_model=list[OrderSnapshot])
async def list_orders(
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.list_orders(actor)


@router.get("/{order_id}", response_model=OrderSnapshot)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_order(actor, order_id)


@router.get("/{order_id}/payment", response_model=PaymentLinkResponse)
async def get_payment_link(
    order_id: str,
    actor: Actor = Depends(get_actor),
    store: OrderStore = Depends(get_store),
):
    return await payment_link(store, actor, order_id)


@router.get("/{order_id}/payment/qr")
async def get_payment_qr(
    order_id: str,
    actor: Actor = Depends(get_actor),
    store: OrderStore = Depends(get_store),
):
    link = await payment_link(store, actor, order_id)
    return Response(content=render_qr_png(link.upi_link), media_type="image/png")

"""
Order Service: Feedback API

A student rates a Completed order once. The rule lives here, at the API
boundary; the lifecycle engine does not know about feedback.
"""
import logging

from fastapi import APIRouter, Depends

from canteen.api.deps import get_actor, get_store
from canteen.core.errors import Forbidden, InvalidTransition, NotFound
from canteen.core.security import Actor
from canteen.db.order_store import OrderStore
from canteen.models.order import OrderStatus
from canteen.schemas.order import FeedbackRequest, OrderSnapshot

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("", response_model=OrderSnapshot)
async def submit_feedback(
    payload: FeedbackRequest,
    actor: Actor = Depends(get_actor),
    store: OrderStore = Depends(get_store),
):
    if not actor.is_student:
        raise Forbidden("Only students can leave feedback.")

    comment = payload.comment.strip() if payload.comment else None
    if not await store.set_feedback(payload.order_id, actor.id, payload.rating, comment):
        order = await store.find(payload.order_id)
        if order is None:
            raise NotFound("Order not found.")
        if order.student_id != actor.id:
            raise Forbidden("Order belongs to another student.")
        if order.status is not OrderStatus.COMPLETED:
            raise InvalidTransition("Feedback is accepted only for completed orders.")
        raise InvalidTransition("Feedback has already been submitted for this order.")

    logger.info("Feedback recorded for order %s (rating %d)", payload.order_id, payload.rating)
    return OrderSnapshot.from_order(await store.get(payload.order_id))

"""
Order Service: UPI payment link

The service never talks to a payment gateway. It only renders the UPI deep
link (and a QR image of it) the student scans to pay the canteen manager;
the manager reconciles manually and calls confirm-payment.
"""
from io import BytesIO
from urllib.parse import quote, urlencode

import qrcode

from canteen.core.config import get_settings
from canteen.core.errors import NotFound
from canteen.core.security import Actor
from canteen.db.order_store import OrderStore
from canteen.schemas.order import OrderSnapshot, PaymentLinkResponse

settings = get_settings()


def format_amount(paise: int) -> str:
    return f"{paise // 100}.{paise % 100:02d}"


def build_upi_link(upi_id: str, amount_paise: int) -> str:
    query = urlencode(
        {
            "pa": upi_id,
            "pn": settings.UPI_PAYEE_NAME,
            "am": format_amount(amount_paise),
            "cu": settings.UPI_CURRENCY,
        },
        safe="@",
        quote_via=quote,
    )
    return f"upi://pay?{query}"


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


async def payment_link(store: OrderStore, actor: Actor, order_id: str) -> PaymentLinkResponse:
    if actor.is_student:
        order = await store.get(order_id, student_id=actor.id)
    else:
        order = await store.get(order_id, manager_id=actor.id)

    manager = await store.get_user(order.manager_id)
    if manager is None or not manager.upi_id:
        raise NotFound("Canteen manager has no UPI id configured.")

    snapshot = OrderSnapshot.from_order(order)
    return PaymentLinkResponse(
        order_id=snapshot.id,
        payment_status=snapshot.payment_status,
        amount=format_amount(snapshot.total),
        currency=settings.UPI_CURRENCY,
        upi_link=build_upi_link(manager.upi_id, snapshot.total),
    )

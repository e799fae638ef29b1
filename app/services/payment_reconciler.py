"""
Payment reconciliation: applies gateway webhook events and on-demand gateway
lookups to orders.payment_status / orders.order_status.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Order, OrderStatus, PaymentStatus
from app.services.cashfree_service import GATEWAY_ACTIVE, GATEWAY_PAID, CashfreeService, parse_internal_order_id
from app.services.email_service import Mailer, send_order_confirmation_emails, send_payment_failed_emails
from app.services.order_items import fetch_primary_images, items_for_order

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS_WEBHOOK = "PAYMENT_SUCCESS_WEBHOOK"
PAYMENT_FAILED_WEBHOOK = "PAYMENT_FAILED_WEBHOOK"


class OrderNotFound(Exception):
    pass


class PaymentReferenceMissing(Exception):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_order(db: Session, gateway_order_id: Any) -> Optional[Order]:
    """
    Internal order for a gateway order id. The payment_id stored at order creation
    wins; the order_<id>_<ts> naming convention is the fallback for older rows.
    """
    if not isinstance(gateway_order_id, str) or not gateway_order_id.strip():
        return None
    gateway_order_id = gateway_order_id.strip()
    order = db.query(Order).filter(Order.payment_id == gateway_order_id).first()
    if order is not None:
        return order
    internal_id = parse_internal_order_id(gateway_order_id)
    if internal_id is None:
        return None
    return db.query(Order).filter(Order.id == internal_id).first()


def _set_status(db: Session, order: Order, payment_status: str, order_status: str,
                payment_method: Optional[str] = None) -> None:
    order.payment_status = payment_status
    order.order_status = order_status
    if payment_method is not None:
        order.payment_method = payment_method
    order.updated_at = _now()
    db.commit()
    db.refresh(order)
    logger.info("Order %s: payment_status=%s order_status=%s", order.id, payment_status, order_status)


def _notify_confirmed(db: Session, mailer: Mailer, order: Order) -> None:
    try:
        items = items_for_order(order)
        images = fetch_primary_images(db, [i.get("product_id") for i in items], settings.PUBLIC_BASE_URL)
        send_order_confirmation_emails(db, mailer, order, items, images)
    except Exception as e:
        logger.warning("Order %s: confirmation emails not sent: %s", order.id, e)


def _notify_failed(db: Session, mailer: Mailer, order: Order, failure_reason: Optional[str]) -> None:
    try:
        items = items_for_order(order)
        images = fetch_primary_images(db, [i.get("product_id") for i in items], settings.PUBLIC_BASE_URL)
        send_payment_failed_emails(db, mailer, order, items, images, failure_reason)
    except Exception as e:
        logger.warning("Order %s: payment failure emails not sent: %s", order.id, e)



def handle_payment_webhook(db: Session, payload: Dict[str, Any], mailer: Mailer) -> Optional[int]:
    """
    Apply one verified gateway event. Returns the internal order id it touched, or
    None when the event was acknowledged without a state change.
    """
    event_type = payload.get("type") if isinstance(payload, dict) else None
    data = payload.get("data") if isinstance(payload, dict) else None
    gateway_order = data.get("order") if isinstance(data, dict) else None
    if not isinstance(gateway_order, dict):
        gateway_order = {}
    gateway_order_id = gateway_order.get("order_id")

    if event_type not in (PAYMENT_SUCCESS_WEBHOOK, PAYMENT_FAILED_WEBHOOK):
        logger.info("Ignoring payment webhook event type %s", event_type)
        return None

    order = resolve_order(db, gateway_order_id)
    if order is None:
        logger.warning("Payment webhook %s: no order for gateway order id %r", event_type, gateway_order_id)
        return None

    if event_type == PAYMENT_SUCCESS_WEBHOOK:
        _set_status(
            db, order, PaymentStatus.PAID.value, OrderStatus.CONFIRMED.value,
            payment_method=gateway_order.get("payment_group") or "online",
        )
        _notify_confirmed(db, mailer, order)
    else:
        _set_status(db, order, PaymentStatus.FAILED.value, OrderStatus.CANCELLED.value)
        failure_reason = gateway_order.get("failure_reason")
        if not isinstance(failure_reason, str) or not failure_reason.strip():
            failure_reason = None
        _notify_failed(db, mailer, order, failure_reason)
    return order.id


async def confirm_payment(db: Session, order_id: int, gateway: CashfreeService, mailer: Mailer) -> Dict[str, Any]:
    """
    Pull the gateway's view of an order and apply it.

    PAID -> completed/processing (with confirmation emails), ACTIVE -> pending/pending,
    anything else -> failed/cancelled.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound("Order not found")
    if not order.payment_id:
        raise PaymentReferenceMissing("Payment ID not found for this order")

    gateway_order = await gateway.get_order(order.payment_id)
    gateway_status = str(gateway_order.get("order_status") or "").upper()

    if gateway_status == GATEWAY_PAID:
        _set_status(db, order, PaymentStatus.COMPLETED.value, OrderStatus.PROCESSING.value)
        await asyncio.to_thread(_notify_confirmed, db, mailer, order)
        return {"success": True, "message": "Payment confirmed", "paymentStatus": GATEWAY_PAID}

    if gateway_status == GATEWAY_ACTIVE:
        _set_status(db, order, PaymentStatus.PENDING.value, OrderStatus.PENDING.value)
        return {"success": False, "message": "Payment is still pending", "paymentStatus": gateway_status}

    _set_status(db, order, PaymentStatus.FAILED.value, OrderStatus.CANCELLED.value)
    return {"success": False, "message": "Payment failed", "paymentStatus": gateway_status or None}

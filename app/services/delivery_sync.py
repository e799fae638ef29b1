"""
Shipment delivery-status sync.

Polls Shiprocket for each tracked shipment of a paid order, stores the latest
meaningful carrier status and advances the order status through the transition
guard. Shipments are processed one at a time and committed individually, so a
failure on one shipment is recorded in its result entry and the batch goes on.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import SETTLED_PAYMENT_STATUSES, SHIPROCKET_PROVIDER, Order, OrderStatus, Shipment
from app.services.email_service import Mailer, send_delivered_email
from app.services.shiprocket_service import ShiprocketService
from app.services.shiprocket_status import (
    first_non_empty,
    map_to_order_status,
    resolve_meaningful_status,
    should_update_order_status,
    unwrap_tracking_response,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_LIMIT = 20
MAX_SYNC_LIMIT = 50


def clamp_limit(value: Any, default: int = DEFAULT_SYNC_LIMIT) -> int:
    """Batch size in [1, MAX_SYNC_LIMIT]; unusable values fall back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        n = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(1, min(MAX_SYNC_LIMIT, n))


def select_shipments(db: Session, limit: int, order_id: Optional[int] = None) -> List[Shipment]:
    """Shiprocket shipments with an AWB on settled orders, least recently synced first."""
    query = (
        db.query(Shipment)
        .join(Order, Order.id == Shipment.order_id)
        .filter(Shipment.provider == SHIPROCKET_PROVIDER)
        .filter(Shipment.shiprocket_awb.isnot(None))
        .filter(func.trim(Shipment.shiprocket_awb) != "")
        .filter(func.lower(Order.payment_status).in_(SETTLED_PAYMENT_STATUSES))
    )
    if order_id is not None:
        query = query.filter(Shipment.order_id == order_id)
    return query.order_by(Shipment.updated_at.asc(), Shipment.id.asc()).limit(limit).all()


def _tracking_details(response: Any) -> Dict[str, Optional[str]]:
    node = unwrap_tracking_response(response)
    td = node.get("tracking_data") if isinstance(node.get("tracking_data"), dict) else {}
    courier = None
    track = td.get("shipment_track")
    if isinstance(track, list) and track and isinstance(track[0], dict):
        courier = first_non_empty(track[0].get("courier_name"), track[0].get("courier_agent_details"))
    return {
        "tracking_url": first_non_empty(td.get("track_url"), node.get("track_url")),
        "courier_name": first_non_empty(courier, td.get("courier_name"), node.get("courier_name")),
    }


def _notify_delivered(db: Session, mailer: Mailer, order: Order, shipment: Shipment) -> None:
    try:
        send_delivered_email(db, mailer, order, shipment)
    except Exception as e:
        logger.warning("Order %s: delivered email not sent: %s", order.id, e)


async def sync_shipment(db: Session, shipment: Shipment, client: ShiprocketService, mailer: Mailer) -> Dict[str, Any]:
    """Sync one shipment and commit. Raises on carrier or database failure."""
    awb = shipment.shiprocket_awb.strip()
    response = await client.track_awb(awb)

    new_status = resolve_meaningful_status(response, shipment.status)
    details = _tracking_details(response)

    if details["tracking_url"]:
        shipment.tracking_url = str(details["tracking_url"])
    if details["courier_name"] and not shipment.shiprocket_courier_name:
        shipment.shiprocket_courier_name = str(details["courier_name"])
    if new_status:
        shipment.status = new_status
    shipment.response_json = response
    shipment.updated_at = datetime.now(timezone.utc)

    order = shipment.order
    verdict = map_to_order_status(new_status)
    order_updated_to = None
    if order is not None and should_update_order_status(order.order_status, verdict):
        logger.info("Order %s: order_status %s -> %s (shipment %s, carrier status %r)",
                    order.id, order.order_status, verdict, shipment.id, new_status)
        order.order_status = verdict
        order.updated_at = datetime.now(timezone.utc)
        order_updated_to = verdict
    db.commit()

    if order_updated_to == OrderStatus.DELIVERED.value:
        await asyncio.to_thread(_notify_delivered, db, mailer, order, shipment)

    return {
        "orderId": shipment.order_id,
        "shipmentId": shipment.id,
        "awb": awb,
        "shipStatus": new_status,
        "orderUpdatedTo": order_updated_to,
    }


async def sync_delivery_statuses(db: Session, client: ShiprocketService, mailer: Mailer,
                                 limit: int = DEFAULT_SYNC_LIMIT, order_id: Optional[int] = None) -> Dict[str, Any]:
    shipments = select_shipments(db, clamp_limit(limit), order_id)
    # Plain values up front; a failed commit expires the ORM instances
    targets = [(s, s.id, s.order_id, s.shiprocket_awb) for s in shipments]
    results: List[Dict[str, Any]] = []
    for shipment, shipment_id, shipment_order_id, awb in targets:
        try:
            results.append(await sync_shipment(db, shipment, client, mailer))
        except Exception as e:
            db.rollback()
            logger.warning("Delivery sync failed for shipment %s (AWB %s): %s", shipment_id, awb, e)
            results.append({
                "orderId": shipment_order_id,
                "shipmentId": shipment_id,
                "awb": awb,
                "error": str(e) or e.__class__.__name__,
            })
    failed = sum(1 for r in results if "error" in r)
    logger.info("Delivery sync processed %s shipments (%s failed)", len(results), failed)
    return {"success": True, "synced": len(results), "results": results}

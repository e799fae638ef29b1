"""
Order shipment routes for the storefront: public-safe shipment fields and live carrier tracking.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.http.requests.schemas import ShipmentPublicResponse
from app.models import Shipment
from app.services.shiprocket_service import ShiprocketService, get_shiprocket_client, summarize_tracking

logger = logging.getLogger(__name__)
router = APIRouter()


def _latest_shipment(db: Session, order_id: int) -> Optional[Shipment]:
    return (
        db.query(Shipment)
        .filter(Shipment.order_id == order_id)
        .order_by(Shipment.created_at.desc(), Shipment.id.desc())
        .first()
    )


@router.get("/{order_id}/shipment", response_model=Optional[ShipmentPublicResponse])
async def get_order_shipment(order_id: int, db: Session = Depends(get_db)):
    """Latest shipment for an order, without the raw provider payload."""
    shipment = _latest_shipment(db, order_id)
    if not shipment:
        return None
    return {
        "id": shipment.id,
        "order_id": shipment.order_id,
        "status": shipment.status,
        "shiprocket_awb": shipment.shiprocket_awb,
        "tracking_url": shipment.tracking_url,
        "label_url": shipment.label_url,
        "updated_at": shipment.updated_at,
    }


@router.get("/{order_id}/tracking")
async def get_order_tracking(
    order_id: int,
    db: Session = Depends(get_db),
    client: ShiprocketService = Depends(get_shiprocket_client),
):
    """Carrier scan history for the order's AWB. Empty scans when untracked or the carrier fails."""
    shipment = _latest_shipment(db, order_id)
    awb = (shipment.shiprocket_awb or "").strip() if shipment else ""
    if not awb:
        return {"scans": []}
    try:
        response = await client.track_awb(awb)
    except Exception as e:
        logger.warning("Tracking lookup failed for order %s (AWB %s): %s", order_id, awb, e)
        return {"scans": []}
    summary = summarize_tracking(response)
    if not summary.get("tracking_url") and shipment.tracking_url:
        summary["tracking_url"] = shipment.tracking_url
    return summary

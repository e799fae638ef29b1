"""
Admin shipment routes: Shiprocket delivery-status sync.
Callable by an admin/manager session or by a cron job presenting x-sync-secret.
"""
import hmac
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth import has_role, resolve_admin
from app.config import settings
from app.database import get_db
from app.http.requests.schemas import DeliverySyncRequest
from app.models import AdminRole
from app.services.delivery_sync import clamp_limit, sync_delivery_statuses
from app.services.email_service import Mailer, get_mailer
from app.services.shiprocket_service import ShiprocketService, get_shiprocket_client

logger = logging.getLogger(__name__)
router = APIRouter()

SYNC_ROLES = (AdminRole.ADMIN, AdminRole.MANAGER)


def _sync_secret_matches(request: Request) -> bool:
    expected = (settings.SHIPROCKET_SYNC_SECRET or "").strip()
    provided = (request.headers.get("x-sync-secret") or "").strip()
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def is_sync_authorized(request: Request, db: Session) -> bool:
    if has_role(resolve_admin(request, db), SYNC_ROLES):
        return True
    return _sync_secret_matches(request)


@router.post("/sync-delivery")
async def sync_delivery(
    request: Request,
    body: Optional[DeliverySyncRequest] = None,
    db: Session = Depends(get_db),
    client: ShiprocketService = Depends(get_shiprocket_client),
    mailer: Mailer = Depends(get_mailer),
):
    """Poll Shiprocket for a batch of paid orders' shipments and advance order status."""
    if not is_sync_authorized(request, db):
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})

    body = body or DeliverySyncRequest()
    limit = clamp_limit(body.limit)
    try:
        return await sync_delivery_statuses(db, client, mailer, limit=limit, order_id=body.orderId)
    except Exception as e:
        logger.exception("Delivery sync failed: %s", e)
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to sync delivery status"},
        )

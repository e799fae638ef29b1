"""
Checkout payment routes: Cashfree webhook receiver (public, HMAC verified) and
the storefront's post-redirect payment confirmation.
"""
import asyncio
import json
import logging
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.http.requests.schemas import PaymentConfirmationRequest, PaymentConfirmationResponse
from app.services.cashfree_service import CashfreeService, get_cashfree_client, verify_webhook_signature
from app.services.email_service import Mailer, get_mailer
from app.services.payment_reconciler import (
    OrderNotFound,
    PaymentReferenceMissing,
    confirm_payment,
    handle_payment_webhook,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/payment-webhook")
async def payment_webhook_receive(
    request: Request,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Public endpoint for Cashfree payment webhooks. No session.
    x-webhook-signature is base64 HMAC-SHA256 of the raw body with the gateway secret.
    """
    raw_body = await request.body()
    signature = request.headers.get("x-webhook-signature")
    secret = (settings.CASHFREE_SECRET_KEY or "").strip()

    if not secret:
        logger.warning("Payment webhook: CASHFREE_SECRET_KEY not set; signature not verified")
    elif not signature:
        logger.warning("Payment webhook: x-webhook-signature header missing; processing unverified event")
    elif not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("Payment webhook: signature verification failed")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    try:
        payload = json.loads(raw_body.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("webhook body is not a JSON object")
        await asyncio.to_thread(handle_payment_webhook, db, payload, mailer)
    except Exception as e:
        logger.exception("Payment webhook processing failed: %s", e)
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )
    return {"success": True}


@router.post("/payment-confirmation", response_model=PaymentConfirmationResponse)
async def payment_confirmation(
    body: PaymentConfirmationRequest,
    db: Session = Depends(get_db),
    gateway: CashfreeService = Depends(get_cashfree_client),
    mailer: Mailer = Depends(get_mailer),
):
    """Ask the gateway for the order's payment state and apply it."""
    try:
        return await confirm_payment(db, body.orderId, gateway, mailer)
    except (OrderNotFound, PaymentReferenceMissing) as e:
        logger.warning("Payment confirmation for order %s: %s", body.orderId, e)
        details = str(e)
    except Exception as e:
        logger.exception("Payment confirmation failed for order %s: %s", body.orderId, e)
        db.rollback()
        details = str(e) if settings.IS_DEVELOPMENT else "Payment verification failed"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Failed to confirm payment", "details": details},
    )

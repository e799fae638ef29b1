"""
Cashfree payment gateway integration: webhook signature verification and order status lookup.
"""
import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from app.config import settings
from app.services.http_client import get_once

logger = logging.getLogger(__name__)

# Gateway order status values (GET /pg/orders/{order_id} → order_status)
GATEWAY_PAID = "PAID"
GATEWAY_ACTIVE = "ACTIVE"


class CashfreeError(Exception):
    """Gateway call failed or returned an unusable payload."""


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """base64(HMAC-SHA256(secret, raw_body))"""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time comparison of the x-webhook-signature header against the computed HMAC."""
    if not secret or not signature:
        return False
    computed = compute_webhook_signature(raw_body, secret)
    return hmac.compare_digest(computed.encode("utf-8"), signature.strip().encode("utf-8"))


def parse_internal_order_id(gateway_order_id: Any) -> Optional[int]:
    """
    Internal order id from the order_<id>_<timestamp> naming convention.
    Returns None when the id does not follow the convention.
    """
    if not isinstance(gateway_order_id, str):
        return None
    parts = gateway_order_id.strip().split("_")
    if len(parts) != 3 or parts[0] != "order" or not parts[1].isdigit():
        return None
    return int(parts[1])


def get_cashfree_client() -> "CashfreeService":
    """Client built from settings. FastAPI dependency; tests override it."""
    return CashfreeService(
        app_id=settings.CASHFREE_APP_ID,
        secret_key=settings.CASHFREE_SECRET_KEY,
        base_url=settings.CASHFREE_API_URL,
        api_version=settings.CASHFREE_API_VERSION,
    )


class CashfreeService:
    """Cashfree PG API client"""

    def __init__(
        self,
        app_id: str,
        secret_key: str,
        base_url: str = "https://sandbox.cashfree.com",
        api_version: str = "2023-08-01",
    ):
        self.app_id = app_id or ""
        self.secret_key = secret_key or ""
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version

    def _headers(self) -> Dict[str, str]:
        return {
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
            "x-api-version": self.api_version,
            "Accept": "application/json",
        }

    async def get_order(self, gateway_order_id: str) -> Dict[str, Any]:
        """Fetch the gateway's live view of an order. Single attempt, no retry."""
        url = f"{self.base_url}/pg/orders/{quote(str(gateway_order_id), safe='')}"
        try:
            resp = await get_once(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise CashfreeError(f"Cashfree order lookup failed: {e}") from e
        try:
            data = resp.json()
        except ValueError as e:
            raise CashfreeError(f"Cashfree returned non-JSON response ({resp.status_code})") from e
        if not isinstance(data, dict):
            raise CashfreeError("Cashfree response format unexpected")
        if resp.status_code >= 400:
            raise CashfreeError(
                f"Cashfree order lookup failed ({resp.status_code}): {data.get('message') or data.get('code') or ''}"
            )
        logger.debug("Cashfree order %s status=%s", gateway_order_id, data.get("order_status"))
        return data

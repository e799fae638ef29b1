"""
Shiprocket API client.
- Auth: POST /v1/external/auth/login (email/password) → JWT, cached ~9h; or a pre-issued SHIPROCKET_TOKEN.
- Tracking: GET /v1/external/courier/track/awb/{awb}
"""
import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

from app.config import settings
from app.services.http_client import get_with_retry, post_no_retry
from app.services.shiprocket_status import first_non_empty, unwrap_tracking_response

logger = logging.getLogger(__name__)

USER_AGENT = "casebuddy/1.0"


class ShiprocketError(Exception):
    """Shiprocket request failed (auth, HTTP status, or unexpected payload)."""


class ShiprocketConfigError(ShiprocketError):
    """Shiprocket credentials missing or malformed."""


def get_shiprocket_client() -> "ShiprocketService":
    """Client built from settings. FastAPI dependency; tests override it."""
    return ShiprocketService(
        base_url=settings.SHIPROCKET_BASE_URL,
        email=settings.SHIPROCKET_EMAIL,
        password=settings.SHIPROCKET_PASSWORD,
        token=settings.SHIPROCKET_TOKEN,
    )


class ShiprocketService:
    """Shiprocket external API client with a process-wide token cache."""

    # Token cache: (token_string, expires_at)
    _token_cache: Optional[tuple[str, float]] = None
    TOKEN_CACHE_TTL_SEC = 9 * 60 * 60

    def __init__(
        self,
        base_url: str = "https://apiv2.shiprocket.in",
        email: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
    ):
        self.base_url = (base_url or "https://apiv2.shiprocket.in").rstrip("/")
        self.email = (email or "").strip() or None
        self.password = password or None
        self.static_token = (token or "").strip() or None

    def _check_config(self) -> None:
        if self.static_token:
            # Must be the JWT from /auth/login, not an API password
            if self.static_token.count(".") < 2:
                raise ShiprocketConfigError(
                    "Invalid SHIPROCKET_TOKEN: expected a JWT (format a.b.c). "
                    "Use SHIPROCKET_EMAIL + SHIPROCKET_PASSWORD instead."
                )
            return
        if not self.email or not self.password:
            raise ShiprocketConfigError("Missing SHIPROCKET_EMAIL or SHIPROCKET_PASSWORD")

    async def get_token(self) -> str:
        self._check_config()
        if self.static_token:
            return self.static_token
        now = time.time()
        cached = ShiprocketService._token_cache
        if cached is not None and cached[1] > now:
            return cached[0]

        url = f"{self.base_url}/v1/external/auth/login"
        headers = {"Content-Type": "application/json", "Accept": "application/json", "User-Agent": USER_AGENT}
        resp = await post_no_retry(url, json={"email": self.email, "password": self.password}, headers=headers)
        if resp.status_code >= 400:
            raise ShiprocketError(f"Shiprocket auth failed ({resp.status_code}): {resp.text}")
        try:
            data = resp.json()
        except ValueError:
            data = None
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise ShiprocketError("Shiprocket auth response format unexpected")
        ShiprocketService._token_cache = (token, now + self.TOKEN_CACHE_TTL_SEC)
        logger.info("Shiprocket token refreshed")
        return token

    async def request(self, path: str) -> Any:
        """GET a Shiprocket path; returns parsed JSON (or text), raises ShiprocketError on non-2xx."""
        token = await self.get_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json", "User-Agent": USER_AGENT}
        url = f"{self.base_url}{path}"
        try:
            resp = await get_with_retry(url, headers=headers)
        except httpx.HTTPError as e:
            raise ShiprocketError(f"Shiprocket request failed {path}: {e}") from e
        text = resp.text
        try:
            data = resp.json() if text else None
        except ValueError:
            data = text
        if resp.status_code == 401:
            # Cached token revoked or expired early; force a fresh login next time
            ShiprocketService._token_cache = None
        if resp.status_code >= 400:
            raise ShiprocketError(f"Shiprocket request failed ({resp.status_code}) {path}: {text}")
        return data

    async def track_awb(self, awb: str) -> Any:
        return await self.request(f"/v1/external/courier/track/awb/{quote(str(awb), safe='')}")


def _split_timestamp(value: str) -> tuple[str, str]:
    parts = value.split(" ", 1)
    return parts[0], parts[1] if len(parts) > 1 else ""


def summarize_tracking(response: Any) -> dict:
    """Customer-facing tracking summary: scans, track URL, ETD and current status."""
    node = unwrap_tracking_response(response)
    td = node.get("tracking_data") if isinstance(node.get("tracking_data"), dict) else node
    activities = td.get("shipment_track_activities")
    if not isinstance(activities, list):
        activities = []
    current_status = None
    track = td.get("shipment_track")
    if isinstance(track, list) and track and isinstance(track[0], dict):
        current_status = track[0].get("current_status")
    scans = []
    for scan in activities:
        if not isinstance(scan, dict):
            continue
        stamp = str(first_non_empty(scan.get("date"), scan.get("timestamp")) or "")
        date_part, time_part = _split_timestamp(stamp)
        scans.append({
            "activity": scan.get("activity") or scan.get("status") or "",
            "location": scan.get("location") or "",
            "date": date_part,
            "time": time_part,
            "timestamp": stamp,
        })
    return {
        "scans": scans,
        "tracking_url": first_non_empty(td.get("track_url"), td.get("tracking_url")),
        "etd": first_non_empty(td.get("etd"), td.get("edd")),
        "current_status": first_non_empty(current_status, td.get("current_status")),
    }

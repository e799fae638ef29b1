"""
Shared HTTP helpers with timeouts for the carrier and gateway APIs.
Carrier GETs may retry on 5xx/connection errors; gateway calls are single-attempt.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds


def _default_timeout() -> float:
    return float(getattr(settings, "HTTP_TIMEOUT_SEC", 30.0) or 30.0)


async def _sleep_backoff(attempt: int) -> None:
    if attempt <= 0:
        return
    delay = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 10.0))


async def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: Optional[float] = None,
    max_retries: int = DEFAULT_RETRIES,
    retry_on: tuple[int, ...] = (502, 503, 504),
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform an HTTP request with a timeout, retrying only on retry_on status codes
    and on connection/read timeouts. The last response or exception is surfaced.
    """
    timeout = timeout or _default_timeout()
    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.request(method, url, **kwargs)
            if attempt < max_retries and resp.status_code in retry_on:
                logger.warning("HTTP %s %s returned %s; retrying", method, url, resp.status_code)
                await _sleep_backoff(attempt + 1)
                continue
            return resp
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout) as e:
            if attempt < max_retries:
                logger.warning("HTTP %s %s attempt %s failed: %s", method, url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    raise RuntimeError("unreachable")  # pragma: no cover


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: Optional[float] = None,
    max_retries: int = DEFAULT_RETRIES,
) -> httpx.Response:
    """GET with retries on 5xx and connection errors."""
    return await request_with_retry(
        "GET", url, params=params, headers=headers, timeout=timeout, max_retries=max_retries
    )


async def get_once(
    url: str,
    *,
    headers: Optional[dict] = None,
    timeout: Optional[float] = None,
) -> httpx.Response:
    """GET with a single attempt (gateway status lookups)."""
    async with httpx.AsyncClient(timeout=timeout or _default_timeout()) as client:
        return await client.get(url, headers=headers or {})


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: Optional[float] = None,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Uses single attempt with timeout."""
    async with httpx.AsyncClient(timeout=timeout or _default_timeout()) as client:
        return await client.post(url, json=json or {}, headers=headers or {})

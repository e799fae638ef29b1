"""
Shiprocket tracking status helpers. Pure functions, no I/O:
- numeric shipment status codes → human labels
- picking a meaningful status out of a track/awb response
- mapping free-text carrier status to a coarse order-status verdict
- the order-status transition guard
"""
import re
from typing import Any, Optional

from app.models import TERMINAL_ORDER_STATUSES, OrderStatus

# Shiprocket shipment status codes (tracking_data.shipment_status / sr-status)
SHIPROCKET_STATUS_CODES = {
    "1": "AWB Assigned",
    "2": "Label Generated",
    "3": "Pickup Scheduled",
    "4": "Pickup Queued",
    "5": "Manifest Generated",
    "6": "Shipped",
    "7": "Delivered",
    "8": "Canceled",
    "9": "RTO Initiated",
    "10": "RTO Delivered",
    "11": "Pending",
    "12": "Lost",
    "13": "Pickup Error",
    "14": "RTO Acknowledged",
    "15": "Pickup Rescheduled",
    "16": "Cancellation Requested",
    "17": "Out For Delivery",
    "18": "In Transit",
    "19": "Out For Pickup",
    "20": "Pickup Exception",
    "21": "Undelivered",
    "22": "Delayed",
    "23": "Partial Delivered",
    "24": "Destroyed",
    "25": "Damaged",
    "26": "Fulfilled",
    "38": "Reached At Destination Hub",
    "39": "Misrouted",
    "40": "RTO NDR",
    "41": "RTO Out For Delivery",
    "42": "Picked Up",
    "43": "Self Fulfilled",
    "44": "Disposed Off",
    "45": "Cancelled Before Dispatched",
    "46": "RTO In Transit",
    "47": "QC Failed",
    "48": "Reached Warehouse",
    "49": "Custom Cleared",
    "50": "In Flight",
    "51": "Handover To Courier",
    "52": "Shipment Booked",
    "54": "In Transit Overseas",
    "55": "Connection Aligned",
    "56": "Reached Overseas Warehouse",
    "57": "Custom Cleared Overseas",
    "59": "Box Packing",
    "60": "FC Allocated",
    "61": "Picklist Generated",
    "62": "Ready To Pack",
    "63": "Packed",
    "67": "FC Manifest Generated",
    "68": "Processed At Warehouse",
    "71": "Handover Exception",
    "72": "Packed Exception",
    "75": "RTO Lock",
    "76": "Untraceable",
    "77": "Issue Related To The Recipient",
    "78": "Reached Back At Seller City",
}

_NUMERIC_RE = re.compile(r"^\d+$")

# Keyword groups in precedence order; first match wins
_DELIVERED_KEYWORDS = ("delivered",)
_RETURN_KEYWORDS = ("rto", "return", "returned")
_CANCEL_KEYWORDS = ("cancel",)
_SHIPPED_KEYWORDS = (
    "in transit",
    "out for delivery",
    "shipped",
    "picked",
    "pickup",
    "manifest",
    "dispatched",
)


def first_non_empty(*values: Any) -> Any:
    """First value that is not None and not a blank string."""
    for v in values:
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def normalize_text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def is_numeric_only(value: Any) -> bool:
    return bool(_NUMERIC_RE.match(normalize_text(value)))


def status_code_to_label(code: Any) -> Optional[str]:
    return SHIPROCKET_STATUS_CODES.get(normalize_text(code).lstrip("0") or "0")


def pretty_shipment_status(raw: Any) -> Optional[str]:
    """Human label for a stored status; numeric codes become a label or a placeholder."""
    text = normalize_text(raw)
    if not text:
        return None
    if is_numeric_only(text):
        return status_code_to_label(text) or f"Tracking in progress (code {text})"
    return text


def unwrap_tracking_response(response: Any) -> dict:
    """
    track/awb responds with {"tracking_data": {...}}; some accounts wrap it in a list
    or key it by AWB. Return the object that holds tracking_data (or the response itself).
    """
    node = response
    if isinstance(node, list):
        node = node[0] if node else {}
    if not isinstance(node, dict):
        return {}
    if "tracking_data" not in node and len(node) == 1:
        (only,) = node.values()
        if isinstance(only, dict) and "tracking_data" in only:
            return only
    return node


def _latest_event_status(tracking_data: dict) -> Any:
    track = tracking_data.get("shipment_track")
    if isinstance(track, list) and track and isinstance(track[0], dict):
        status = first_non_empty(track[0].get("current_status"))
        if status is not None:
            return status
    activities = tracking_data.get("shipment_track_activities")
    if isinstance(activities, list) and activities and isinstance(activities[0], dict):
        return first_non_empty(activities[0].get("sr-status-label"), activities[0].get("activity"))
    return None


def extract_candidate_status(response: Any, previous_status: Optional[str]) -> Optional[str]:
    """Latest tracking event, then top-level current status, then shipment-level status, then previous."""
    node = unwrap_tracking_response(response)
    tracking_data = node.get("tracking_data")
    if not isinstance(tracking_data, dict):
        tracking_data = {}
    candidate = first_non_empty(
        _latest_event_status(tracking_data),
        node.get("current_status"),
        tracking_data.get("current_status"),
        tracking_data.get("shipment_status"),
        node.get("shipment_status"),
        previous_status,
    )
    return normalize_text(candidate) or None


def resolve_meaningful_status(response: Any, previous_status: Optional[str]) -> Optional[str]:
    """
    Status worth persisting for a shipment. Bare numeric codes never replace a known
    human-readable status, and are otherwise stored as a label or a placeholder.
    """
    candidate = extract_candidate_status(response, previous_status)
    if candidate is None:
        return None
    if not is_numeric_only(candidate):
        return candidate
    previous = normalize_text(previous_status)
    if previous and not is_numeric_only(previous):
        return previous
    return pretty_shipment_status(candidate)


def map_to_order_status(raw_status: Optional[str]) -> Optional[str]:
    """
    Coarse order-status verdict from free-text carrier status:
    delivered, cancelled (RTO/returns/cancellations), shipped, or None.
    """
    s = normalize_text(raw_status).lower()
    if not s:
        return None
    if any(k in s for k in _DELIVERED_KEYWORDS):
        return OrderStatus.DELIVERED.value
    # Return-to-origin is treated as a cancelled order on the storefront
    if any(k in s for k in _RETURN_KEYWORDS):
        return OrderStatus.CANCELLED.value
    if any(k in s for k in _CANCEL_KEYWORDS):
        return OrderStatus.CANCELLED.value
    if any(k in s for k in _SHIPPED_KEYWORDS):
        return OrderStatus.SHIPPED.value
    return None


def should_update_order_status(current: Optional[str], verdict: Optional[str]) -> bool:
    """Transition guard. delivered and cancelled are terminal."""
    if not verdict:
        return False
    c = normalize_text(current).lower()
    if c in TERMINAL_ORDER_STATUSES:
        return False
    if verdict == OrderStatus.DELIVERED.value:
        return True
    if verdict == OrderStatus.CANCELLED.value:
        return c != OrderStatus.CANCELLED.value
    if verdict == OrderStatus.SHIPPED.value:
        return c not in (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value)
    return False

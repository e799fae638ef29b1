"""
Pydantic schemas for request/response validation (Http/Requests).
"""
from pydantic import BaseModel, Field, validator
from typing import Any, Optional
from datetime import datetime


# Checkout Schemas
class PaymentConfirmationRequest(BaseModel):
    orderId: int = Field(..., gt=0)


class PaymentConfirmationResponse(BaseModel):
    success: bool
    message: str
    paymentStatus: Optional[str] = None


# Shipment sync Schemas
class DeliverySyncRequest(BaseModel):
    # Clamped by the sync service; anything non-numeric falls back to the default
    limit: Optional[Any] = None
    orderId: Optional[int] = None

    @validator("orderId", pre=True)
    def blank_order_id(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


# Order tracking Schemas
class ShipmentPublicResponse(BaseModel):
    id: int
    order_id: int
    status: Optional[str] = None
    shiprocket_awb: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    updated_at: Optional[datetime] = None


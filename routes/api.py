"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import checkout, orders, shipments

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(checkout.router, prefix="/api/checkout", tags=["checkout"])
    app.include_router(shipments.router, prefix="/api/admin/shipments", tags=["admin-shipments"])
    app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
    logger.debug("API routes registered (env=%s)", settings.ENV)

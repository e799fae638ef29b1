"""
CaseBuddy order reconciliation - FastAPI Backend
"""
import asyncio
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
import uvicorn
import logging

from routes.api import register_routes
from app.database import engine, Base, SessionLocal
from app.config import settings
from app.services.delivery_sync import sync_delivery_statuses
from app.services.email_service import get_mailer
from app.services.shiprocket_service import get_shiprocket_client

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="CaseBuddy Order Reconciliation API",
    description="Payment webhooks, payment confirmation and Shiprocket delivery sync",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("Starting CaseBuddy order reconciliation API")
logger.info("Environment: %s (production=%s)", settings.ENV, settings.IS_PRODUCTION)

# Startup config validation (warn only)
if settings.IS_PRODUCTION and settings.JWT_SECRET.strip() in ("", "your-secret-key-change-in-production"):
    logger.warning("JWT_SECRET is default or empty in production. Set a strong JWT_SECRET in environment.")
if not settings.CASHFREE_SECRET_KEY.strip():
    logger.warning("CASHFREE_SECRET_KEY is not set. Payment webhook signatures will not be verified.")
if not settings.SHIPROCKET_SYNC_SECRET.strip():
    logger.info("SHIPROCKET_SYNC_SECRET is not set. Delivery sync requires an admin session.")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request",
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last resort: log and return a non-sensitive 500."""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

register_routes(app, settings)


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "api",
        "db": db_status,
        "environment": settings.ENV,
    }


# --- Shiprocket delivery-status poll ---

async def _delivery_sync_loop() -> None:
    """Background: sync one batch of shipments every DELIVERY_SYNC_INTERVAL_SEC."""
    await asyncio.sleep(settings.DELIVERY_SYNC_FIRST_DELAY_SEC)
    logger.info("Delivery sync poll started (interval=%ss)", settings.DELIVERY_SYNC_INTERVAL_SEC)
    while True:
        db = None
        try:
            db = SessionLocal()
            result = await sync_delivery_statuses(
                db,
                get_shiprocket_client(),
                get_mailer(),
                limit=settings.DELIVERY_SYNC_BATCH_SIZE,
            )
            if result.get("synced", 0) > 0:
                errors = [r for r in result.get("results", []) if r.get("error")]
                logger.info("Delivery sync: synced=%s errors=%s", result.get("synced", 0), len(errors))
        except Exception as e:
            logger.exception("Delivery sync poll failed: %s", e)
        finally:
            if db:
                db.close()
        await asyncio.sleep(settings.DELIVERY_SYNC_INTERVAL_SEC)


@app.on_event("startup")
async def startup_delivery_sync() -> None:
    """Start the background delivery sync when an interval is configured."""
    if settings.DELIVERY_SYNC_INTERVAL_SEC > 0:
        asyncio.create_task(_delivery_sync_loop())
    else:
        logger.info("Delivery sync poll disabled (DELIVERY_SYNC_INTERVAL_SEC=0)")


@app.get("/api")
async def root():
    """API root endpoint"""
    return {
        "message": "CaseBuddy order reconciliation API",
        "version": "1.0.0",
        "environment": settings.ENV,
        "docs": "/docs" if settings.IS_DEVELOPMENT else "disabled in production"
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower()
    )

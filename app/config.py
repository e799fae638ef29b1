"""
Application configuration with automatic environment detection
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class Settings:
    """Application settings with automatic environment detection"""

    # Environment detection
    ENV = os.getenv("ENV", "DEV").upper()
    IS_PRODUCTION = ENV == "PROD" or ENV == "PRODUCTION"
    IS_DEVELOPMENT = not IS_PRODUCTION

    # Server configuration
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./casebuddy.db")

    # Admin session tokens (issued by the storefront admin login)
    JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
    AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
    ADMIN_COOKIE_NAME = "admin_token"

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """CORS origins from ALLOWED_ORIGINS (comma-separated), plus localhost in development"""
        origins = []
        if self.IS_DEVELOPMENT:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])
        env_origins = os.getenv("ALLOWED_ORIGINS", "")
        for origin in env_origins.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins

    # Cashfree payment gateway
    CASHFREE_APP_ID = os.getenv("CASHFREE_APP_ID", "")
    CASHFREE_SECRET_KEY = os.getenv("CASHFREE_SECRET_KEY", "")
    CASHFREE_ENV = os.getenv("CASHFREE_ENV", "TEST").upper()
    CASHFREE_API_VERSION = os.getenv("CASHFREE_API_VERSION", "2023-08-01")

    @property
    def CASHFREE_API_URL(self) -> str:
        if self.CASHFREE_ENV == "PROD":
            return "https://api.cashfree.com"
        return "https://sandbox.cashfree.com"

    # Shiprocket
    SHIPROCKET_BASE_URL = os.getenv("SHIPROCKET_BASE_URL", "https://apiv2.shiprocket.in")
    SHIPROCKET_EMAIL = os.getenv("SHIPROCKET_EMAIL", "")
    SHIPROCKET_PASSWORD = os.getenv("SHIPROCKET_PASSWORD", "")
    SHIPROCKET_TOKEN = os.getenv("SHIPROCKET_TOKEN", "")
    # Shared secret for cron-triggered delivery sync (x-sync-secret header)
    SHIPROCKET_SYNC_SECRET = os.getenv("SHIPROCKET_SYNC_SECRET", "")

    # Background delivery sync loop; 0 disables it
    DELIVERY_SYNC_INTERVAL_SEC = int(os.getenv("DELIVERY_SYNC_INTERVAL_SEC", "0"))
    DELIVERY_SYNC_FIRST_DELAY_SEC = int(os.getenv("DELIVERY_SYNC_FIRST_DELAY_SEC", "120"))
    DELIVERY_SYNC_BATCH_SIZE = int(os.getenv("DELIVERY_SYNC_BATCH_SIZE", "20"))

    # Outbound HTTP
    HTTP_TIMEOUT_SEC = float(os.getenv("HTTP_TIMEOUT_SEC", "30"))

    # SMTP
    EMAIL_HOST = os.getenv("EMAIL_HOST", "")
    EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
    EMAIL_USER = os.getenv("EMAIL_USER", "")
    EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")
    EMAIL_SECURE = os.getenv("EMAIL_SECURE", "false").lower() in ("1", "true", "yes")
    EMAIL_FROM = os.getenv("EMAIL_FROM", "")
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
    SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "info@casebuddy.co.in")

    # Storefront base URL, used to absolutize product image paths in emails
    PUBLIC_BASE_URL = (os.getenv("PUBLIC_BASE_URL", "").strip().rstrip("/") or "http://localhost:3000")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG").upper()

    @property
    def admin_recipient(self) -> Optional[str]:
        return (self.ADMIN_EMAIL or self.EMAIL_USER or "").strip() or None

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION})"

# Global settings instance
settings = Settings()

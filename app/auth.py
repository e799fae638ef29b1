"""
Admin session helpers. Tokens are HS256 JWTs issued by the storefront admin login,
sent either as a Bearer token or in the admin_token cookie.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from fastapi import Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.models import AdminRole, AdminUser

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=24)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a session token. Used by tests and by whatever issues admin sessions."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.AUTH_ALGORITHM)


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(settings.ADMIN_COOKIE_NAME) or None


def resolve_admin(request: Request, db: Session) -> Optional[AdminUser]:
    """Return the active admin for the request's token, or None if absent/invalid."""
    token = _token_from_request(request)
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.AUTH_ALGORITHM])
    except JWTError as e:
        logger.debug("Admin token rejected: %s", e)
        return None
    sub = payload.get("sub")
    if sub is None:
        return None
    try:
        admin_id = int(sub)
    except (TypeError, ValueError):
        return None
    admin = db.query(AdminUser).filter(AdminUser.id == admin_id).first()
    if not admin or not admin.is_active:
        return None
    return admin


def has_role(admin: Optional[AdminUser], allowed: Iterable[AdminRole]) -> bool:
    if admin is None:
        return False
    return (admin.role or "").lower() in {r.value for r in allowed}

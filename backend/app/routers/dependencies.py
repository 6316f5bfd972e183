"""
Router Dependencies
===================

DEPENDENCY INJECTION
-------------------
main.py builds the services at startup and hands them over with
set_services(). Endpoints ask for them with Depends(get_services).

AUTH
----
get_current_user reads a token from either:
    Authorization: Bearer <token>
    Cookie: token=<token>

require_admin additionally insists on role ADMIN.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request

from app.errors import AuthError
from app.models import AuthUser, UserRole
from app.services import Services

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"

_services: Optional[Services] = None  # This gets set when the app starts


def set_services(services: Optional[Services]):
    """Called when the app starts (and by tests) to plug the services in."""
    global _services
    _services = services


def get_services() -> Services:
    if _services is None:
        raise HTTPException(status_code=500, detail="Server not fully started yet")
    return _services


def extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if header and header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None

    cookie = request.cookies.get(TOKEN_COOKIE)
    if cookie:
        return cookie

    return None


def get_current_user(request: Request, services: Services = Depends(get_services)) -> AuthUser:
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        return services.auth.decode_access_token(token)
    except AuthError as e:
        logger.info(f"[Auth] Rejected token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Forbidden: admin only")
    return user

"""
Auth API Router
===============

POST /api/auth/login   - Email + password in, signed token out (also set as a cookie)
POST /api/auth/logout  - Clears the cookie
GET  /api/auth/me      - Who does this token belong to?
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from app.models import AuthUser, LoginRequest, LoginResponse
from app.routers.dependencies import TOKEN_COOKIE, get_current_user, get_services
from app.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    """
    Sign in.

    The token comes back in the body AND as an httpOnly cookie, so browser
    clients don't need to store it themselves.
    """
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    try:
        user = services.auth.authenticate_user(body.email, body.password)
    except Exception:
        logger.exception("[Auth] Login failed")
        raise HTTPException(status_code=500, detail="Login failed")

    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = services.auth.create_access_token(user)
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=services.cookie_secure,
        samesite="lax",
    )
    return LoginResponse(token=token, user=user)


@router.post("/logout")
def logout(response: Response, services: Services = Depends(get_services)):
    """Clear the auth cookie. Clients holding a Bearer token should drop it too."""
    response.delete_cookie(
        TOKEN_COOKIE,
        httponly=True,
        secure=services.cookie_secure,
        samesite="lax",
    )
    return {"success": True}


@router.get("/me", response_model=AuthUser)
def me(user: AuthUser = Depends(get_current_user)):
    return user

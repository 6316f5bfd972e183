"""
Auth Models
===========
Users, roles and the login request/response bodies.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class UserRole(str, Enum):
    """
    ADMIN can upload workbooks. VIEWER can only read.
    """
    ADMIN = "ADMIN"
    VIEWER = "VIEWER"


class AuthUser(BaseModel):
    """The identity carried inside a signed token."""
    id: int
    email: str
    role: UserRole


class LoginRequest(BaseModel):
    email: Optional[str] = Field(None, description="Account email (case-insensitive)")
    password: Optional[str] = Field(None, description="Account password")


class LoginResponse(BaseModel):
    token: str = Field(..., description="Signed JWT, also set as an httpOnly cookie")
    user: AuthUser

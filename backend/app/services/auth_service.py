"""
Auth Service
============

Accounts and tokens.

- Passwords are stored as bcrypt hashes
- Sign-in issues an HS256 JWT carrying sub (user id), email and role
- The same token works as a Bearer header or as the "token" cookie

Nothing here knows about HTTP; app.routers.dependencies does that part.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from sqlalchemy import func, select

from app.errors import AuthError, ValidationError
from app.models import AuthUser, UserRole
from app.models.tables import User
from app.services.database import Database

logger = logging.getLogger(__name__)


class AuthService:
    """
    Args:
        database: Where the users table lives
        jwt_secret: HMAC secret for signing tokens
        expires_hours: Token lifetime
        bcrypt_rounds: Cost factor for new password hashes
    """

    ALGORITHM = "HS256"

    def __init__(
        self,
        database: Database,
        jwt_secret: str,
        expires_hours: float = 24,
        bcrypt_rounds: int = 10,
    ):
        if not jwt_secret:
            raise ValueError("jwt_secret is required for signing tokens")
        self.database = database
        self.jwt_secret = jwt_secret
        self.expires_hours = expires_hours
        self.bcrypt_rounds = bcrypt_rounds

    # =========================================================================
    # PASSWORDS
    # =========================================================================

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Not a bcrypt hash at all
            return False

    # =========================================================================
    # USERS
    # =========================================================================

    def create_user(self, email: str, password: str, role: UserRole = UserRole.VIEWER) -> AuthUser:
        if not email or not password:
            raise ValidationError("Email and password are required")

        with self.database.session() as session:
            user = User(
                email=email.strip().lower(),
                password_hash=self.hash_password(password),
                role=role.value,
            )
            session.add(user)
            session.flush()
            logger.info(f"[Auth] Created {role.value} user {user.email}")
            return AuthUser(id=user.id, email=user.email, role=UserRole(user.role))

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.database.session() as session:
            return session.scalars(
                select(User).where(func.lower(User.email) == email.strip().lower())
            ).first()

    def ensure_admin(self, email: str, password: str) -> AuthUser:
        """Create the bootstrap admin if there's no account with this email yet."""
        existing = self.get_user_by_email(email)
        if existing is not None:
            return AuthUser(id=existing.id, email=existing.email, role=UserRole(existing.role))
        return self.create_user(email, password, role=UserRole.ADMIN)

    def authenticate_user(self, email: str, password: str) -> Optional[AuthUser]:
        """Check an email/password pair. Returns None when it doesn't match."""
        user = self.get_user_by_email(email)
        if user is None:
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        return AuthUser(id=user.id, email=user.email, role=UserRole(user.role))

    # =========================================================================
    # TOKENS
    # =========================================================================

    def create_access_token(self, user: AuthUser, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "iat": now,
            "exp": now + timedelta(hours=self.expires_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm=self.ALGORITHM)

    def decode_access_token(self, token: str) -> AuthUser:
        """
        Verify a token and pull the user out of it.

        Raises:
            AuthError: Bad signature, expired, or the payload isn't ours
        """
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise AuthError("Token expired") from e
        except jwt.PyJWTError as e:
            raise AuthError("Invalid token") from e

        sub, email, role = payload.get("sub"), payload.get("email"), payload.get("role")
        if not all(isinstance(v, str) for v in (sub, email, role)):
            logger.error("[Auth] Invalid token payload structure")
            raise AuthError("Invalid token")

        try:
            return AuthUser(id=int(sub), email=email, role=UserRole(role))
        except ValueError as e:
            raise AuthError("Invalid token") from e

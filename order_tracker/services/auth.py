"""
Session / Identity Provider

Contract used by the order core:
    - current_session(request) -> SessionUser | None
    - require_role(*roles)     -> FastAPI dependency returning SessionUser,
                                  raising UnauthorizedError / ForbiddenError

Sessions are HS256 JWTs (PyJWT) carried in the ``session`` cookie or an
``Authorization: Bearer`` header. Passwords are hashed with bcrypt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.config import Settings, get_settings
from order_tracker.core.exceptions import ForbiddenError, UnauthorizedError
from order_tracker.models import Role, User

logger = logging.getLogger(__name__)

SALT_ROUNDS = 10


@dataclass(frozen=True)
class SessionUser:
    """Verified identity attached to a request or socket."""
    id: int
    name: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMINISTRATOR


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=SALT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# =============================================================================
# TOKENS
# =============================================================================

def create_token(user: SessionUser, settings: Optional[Settings] = None) -> str:
    """Sign a session token for ``user``."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "name": user.name,
        "role": user.role.value,
        "iat": now,
        "exp": now + timedelta(days=settings.session_expire_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Optional[Settings] = None) -> Optional[SessionUser]:
    """Decode a session token. Returns None when it is invalid or expired."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return SessionUser(
            id=int(payload["sub"]),
            name=payload.get("name", ""),
            role=Role(payload["role"]),
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Session token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        logger.debug(f"Session token rejected: {e}")
    return None


def token_from_request(request: Request) -> Optional[str]:
    settings = get_settings()
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(settings.session_cookie_name)


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

async def current_session(request: Request) -> Optional[SessionUser]:
    """Session of the caller, or None for guests."""
    token = token_from_request(request)
    if not token:
        return None
    return verify_token(token)


def require_role(*roles: Role):
    """
    Build a dependency that demands a session, optionally with one of ``roles``.

    Example:
        >>> @app.delete("/api/orders/{order_id}")
        ... async def delete_order(user: SessionUser = Depends(require_role(Role.ADMINISTRATOR))):
        ...     ...
    """
    async def dependency(
        session: Optional[SessionUser] = Depends(current_session),
    ) -> SessionUser:
        if session is None:
            raise UnauthorizedError()
        if roles and session.role not in roles:
            raise ForbiddenError()
        return session

    return dependency


# =============================================================================
# LOGIN
# =============================================================================

async def authenticate(db: AsyncSession, email: str, password: str) -> SessionUser:
    """Check credentials and return the session identity."""
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {email}")
        raise UnauthorizedError("Invalid email or password")

    return SessionUser(id=user.id, name=user.name, role=user.role)

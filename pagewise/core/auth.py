"""
JWT validation OR dev-mode bypass. Controlled by FF_USE_AUTH flag.

Tokens are HS256-signed by the identity provider; `sub` is the owner id.
Disabled accounts are rejected after the token checks out.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from jose import jwt, JWTError

from .config import get_settings
from .errors import AccessDenied
from .flags import get_flags

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    user_id: str
    email: str = ""
    role: str = ""


# Dev-mode user, returned when FF_USE_AUTH=false
DEV_USER = AuthenticatedUser(
    user_id="dev-user",
    email="dev@local",
    role="authenticated",
)

DisabledCheck = Callable[[str], Awaitable[bool]]


def verify_token(token: str) -> AuthenticatedUser:
    settings = get_settings()
    if not settings.jwt_secret:
        raise PermissionError("JWT_SECRET is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience or None,
        )
    except JWTError as e:
        raise PermissionError(f"Invalid token: {e}")

    user_id = payload.get("sub", "")
    if not user_id:
        raise PermissionError("Token missing sub claim")

    return AuthenticatedUser(
        user_id=user_id,
        email=payload.get("email", ""),
        role=payload.get("role", ""),
    )


async def get_current_user(
    authorization: str = "",
    is_disabled: Optional[DisabledCheck] = None,
) -> AuthenticatedUser:
    """
    Resolve the current user from the Authorization header.
    If FF_USE_AUTH is false, returns a dev user.
    """
    flags = get_flags()

    if not flags.use_auth:
        return DEV_USER

    if not authorization:
        raise PermissionError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise PermissionError("Invalid Authorization header. Use: Bearer <token>")

    user = verify_token(token)

    if is_disabled and await is_disabled(user.user_id):
        logger.info("Rejected request from disabled account %s", user.user_id)
        raise AccessDenied("account is disabled")

    return user

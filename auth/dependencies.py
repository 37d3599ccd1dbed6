"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Each helper names the one scheme it accepts and calls that authenticator
explicitly:

  get_current_user()     Authorization: Bearer <access token>
  refresh_principal()    refresh token from the refresh_token cookie,
                         Authorization: Bearer header, or a JSON body field
  require_roles(...)     get_current_user() + role check

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_roles() wraps get_current_user() and raises HTTP 403 on a role miss.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.authenticators import AccessTokenAuthenticator, RefreshTokenAuthenticator
from auth.errors import AuthFailure
from auth.models import Role, SessionPrincipal, User
from auth.service import AuthService

logger = logging.getLogger("gatehouse.auth.dependencies")

REFRESH_COOKIE = "refresh_token"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _unauthorized(message: str = "Authentication required.") -> HTTPException:
    return HTTPException(status_code=401, detail={"code": "unauthorized", "message": message})


# ---------------------------------------------------------------------------
# Access token
# ---------------------------------------------------------------------------


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request with its Bearer access token.

    Returns the User on success, None on any failure. Never raises.
    """
    token = bearer_token(request)
    if not token:
        return None
    result = AccessTokenAuthenticator(get_auth_service(request)).authenticate(token)
    if isinstance(result, AuthFailure):
        logger.debug("Access token rejected: %s", result.message)
        return None
    return result


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise _unauthorized()
    return user


def require_roles(*roles: Role) -> Callable[[Request], User]:
    """Build a dependency that admits only users holding one of ``roles``.

        @router.delete("/users/{user_id}")
        def route(user: User = Depends(require_roles(Role.admin, Role.editor))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in allowed:
            logger.info(
                "User %s (role=%s) denied; needs one of %s",
                user.id,
                user.role.value,
                sorted(r.value for r in allowed),
            )
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role for this operation."},
            )
        return user

    return dependency


require_admin = require_roles(Role.admin)


# ---------------------------------------------------------------------------
# Refresh token
# ---------------------------------------------------------------------------


def presented_refresh_token(
    request: Request,
    body_token: str | None = None,
    allow_bearer: bool = True,
) -> str | None:
    """Find the refresh token the client sent.

    Priority: JSON body field, refresh_token cookie, Authorization: Bearer.
    Routes that take the access token in the Bearer header pass
    allow_bearer=False.
    """
    token = body_token or request.cookies.get(REFRESH_COOKIE)
    if token or not allow_bearer:
        return token
    return bearer_token(request)


def refresh_principal(request: Request, body_token: str | None = None) -> SessionPrincipal:
    """Authenticate with a refresh token. Raises HTTP 401 on any failure."""
    token = presented_refresh_token(request, body_token)
    if not token:
        raise _unauthorized("Refresh token required.")
    result = RefreshTokenAuthenticator(get_auth_service(request)).authenticate(token)
    if isinstance(result, AuthFailure):
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_token", "message": "Token is expired or invalid."},
        )
    return result

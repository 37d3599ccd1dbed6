"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST   /api/v1/auth/local/login              -- email/password login; returns token pair
  POST   /api/v1/auth/local/register           -- create account, then log in
  GET    /api/v1/auth/google/login             -- redirect to Google consent screen
  GET    /api/v1/auth/google/redirect          -- OAuth callback; redirect to frontend
  POST   /api/v1/auth/google/authenticate      -- access token -> user and a new token pair
  GET    /api/v1/auth/providers                -- list enabled OAuth providers (public)
  POST   /api/v1/auth/refresh                  -- refresh token -> new access token
  POST   /api/v1/auth/logout                   -- end the current session
  POST   /api/v1/auth/logout-all               -- end every session of the caller
  GET    /api/v1/auth/profile                  -- current user (requires auth)
  DELETE /api/v1/auth/expired-refresh-tokens   -- sweep expired sessions (admin only)
  DELETE /api/v1/auth/refresh-tokens           -- revoke every session of every user (admin only)

Session transport:
  Both tokens are returned in the JSON body. The refresh token is also set as
  an httpOnly cookie scoped to /api/v1/auth, so browser clients never have to
  store it in JS-readable storage.

Security:
  [H2] local login and register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] local login returns one generic 401 for unknown email, passwordless
       account and wrong password. The service logs which one it was.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.errors import bad_credentials, raise_for_failure
from api.limiter import limiter, login_rate_limit
from api.models import (
    DeletedCountResponse,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    RefreshRequest,
    RegisterRequest,
    UserAndTokensResponse,
    UserProfile,
)
from auth.authenticators import GoogleAuthenticator, LocalAuthenticator, PasswordCredentials
from auth.dependencies import (
    REFRESH_COOKIE,
    get_auth_service,
    get_current_user,
    presented_refresh_token,
    refresh_principal,
    require_admin,
)
from auth.errors import AuthFailure
from auth.models import NewUser, RegisterMethod, User
from auth.oauth import google_enabled, identity_from_token
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("gatehouse.api.auth")

REFRESH_COOKIE_PATH = "/api/v1/auth"

# Auth policy:
# - POST   /auth/local/login, /auth/local/register:  public, rate-limited
# - GET    /auth/google/login, /auth/google/redirect: public
# - POST   /auth/google/authenticate:                 access token (get_current_user)
# - GET    /auth/providers:                           public
# - POST   /auth/refresh:                             refresh token
# - POST   /auth/logout, /auth/logout-all:            access token (get_current_user)
# - GET    /auth/profile:                             access token (get_current_user)
# - DELETE /auth/expired-refresh-tokens:              admin (require_admin)
# - DELETE /auth/refresh-tokens:                      admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_refresh_cookie(response, token: str, service: AuthService) -> None:
    """Write the refresh token as an httpOnly cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the refresh JWT lifetime so both expire together.
    path: only sent to the auth routes that consume it.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=service.issuer.refresh_expire_seconds,
        path=REFRESH_COOKIE_PATH,
    )


def _session_response(
    service: AuthService,
    user: User,
    access_token: str,
    refresh_token: str | None,
    status_code: int = 200,
) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=UserAndTokensResponse(
            user=UserProfile.from_user(user),
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=service.issuer.access_expire_seconds,
        ).model_dump(mode="json"),
    )
    if refresh_token:
        _set_refresh_cookie(resp, refresh_token, service)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _google_client(request: Request):
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_disabled", "message": "Google sign-in is not configured."},
        )
    return client


# ---------------------------------------------------------------------------
# Local (email/password)
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/local/login", response_model=UserAndTokensResponse)
def local_login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a fresh token pair.

    Every credential failure gets the same 401 body [C1].
    """
    service = get_auth_service(request)
    user = LocalAuthenticator(service).authenticate(PasswordCredentials(email=body.email, password=body.password))
    if isinstance(user, AuthFailure):
        raise bad_credentials()

    pair = service.login(user)
    return _session_response(service, user, pair.access_token, pair.refresh_token)


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/local/register", response_model=UserAndTokensResponse, status_code=201)
def local_register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an email/password account and log it in."""
    service = get_auth_service(request)
    user = service.register(
        NewUser(
            email=body.email,
            password=body.password,
            name=body.name,
            last_name=body.last_name,
            register_method=RegisterMethod.email,
        )
    )
    if isinstance(user, AuthFailure):
        raise_for_failure(user)

    pair = service.login(user)
    return _session_response(service, user, pair.access_token, pair.refresh_token, status_code=201)


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/google/login")
async def google_login(request: Request):
    """Redirect the browser to Google. authlib stores the state in the session."""
    client = _google_client(request)
    redirect_uri = get_settings().google_redirect_uri or str(request.url_for("google_redirect"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/redirect", name="google_redirect")
async def google_redirect(request: Request) -> RedirectResponse:
    """Finish the OAuth dance and hand the session to the frontend.

    The refresh token travels as a cookie; the access token in the URL
    fragment, which browsers never send to a server. Failures redirect with
    ?error=<code> so the frontend can show a message.
    """
    frontend = get_settings().frontend_redirect_uri
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("Google OAuth exchange failed: %s", exc.error)
        return RedirectResponse(f"{frontend}?error=oauth_failed", status_code=302)

    service = get_auth_service(request)
    identity = identity_from_token(token, provider="google")
    result = await run_in_threadpool(GoogleAuthenticator(service).authenticate, identity)
    if isinstance(result, AuthFailure):
        return RedirectResponse(f"{frontend}?error={result.kind.value}", status_code=302)

    _user, pair = result
    resp = RedirectResponse(f"{frontend}#access_token={pair.access_token}", status_code=302)
    _set_refresh_cookie(resp, pair.refresh_token, service)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/google/authenticate", response_model=UserAndTokensResponse)
def google_authenticate(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Exchange the access token from the callback fragment for a full session.

    The frontend posts the fragment token as a Bearer header and gets the
    user and a new token pair back in the body, with the refresh cookie.
    """
    service = get_auth_service(request)
    pair = service.login(current_user)
    return _session_response(service, current_user, pair.access_token, pair.refresh_token)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so the login page can render buttons."""
    if google_enabled(get_settings()):
        return [OAuthProviderInfo(name="google", label="Google")]
    return []


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=UserAndTokensResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new access token.

    The refresh token may come from the JSON body, the refresh_token cookie or
    an Authorization: Bearer header. refresh_token in the response is only set
    when rotation is enabled.
    """
    service = get_auth_service(request)
    principal = refresh_principal(request, body.refresh_token if body else None)
    result = service.reissue(principal)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)
    return _session_response(service, result.user, result.access_token, result.refresh_token)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: Optional[RefreshRequest] = None,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """End the session identified by the presented refresh token.

    Sessions on other devices stay alive. Without a refresh token only the
    cookie is cleared.
    """
    service = get_auth_service(request)
    token = presented_refresh_token(request, body.refresh_token if body else None, allow_bearer=False)
    if token and not service.logout(current_user.id, token):
        logger.info("Logout for user %s presented no live session", current_user.id)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    resp.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
    return resp


@router.post("/auth/logout-all", response_model=DeletedCountResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """End every session of the caller, on every device."""
    count = get_auth_service(request).logout_all_devices(current_user.id)
    resp = JSONResponse(
        content=DeletedCountResponse(message="Logged out of all devices", deleted=count).model_dump()
    )
    resp.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
    return resp


@router.get("/auth/profile", response_model=UserProfile)
def profile(request: Request, current_user: User = Depends(get_current_user)) -> UserProfile:
    """Return the stored profile of the authenticated user."""
    user = get_auth_service(request).get_user(current_user.email)
    if isinstance(user, AuthFailure):
        raise_for_failure(user)
    return UserProfile.from_user(user)


# ---------------------------------------------------------------------------
# Session maintenance (admin only)
# ---------------------------------------------------------------------------


@router.delete("/auth/expired-refresh-tokens", response_model=DeletedCountResponse)
def delete_expired_refresh_tokens(
    request: Request,
    current_user: User = Depends(require_admin),
) -> DeletedCountResponse:
    """Run the expiry sweep now instead of waiting for the background task."""
    count = get_auth_service(request).delete_expired_refresh_tokens()
    return DeletedCountResponse(message="Expired refresh tokens deleted successfully", deleted=count)


@router.delete("/auth/refresh-tokens", response_model=DeletedCountResponse)
def delete_all_refresh_tokens(
    request: Request,
    current_user: User = Depends(require_admin),
) -> DeletedCountResponse:
    """Revoke every session of every user. Access tokens live on until they expire."""
    logger.warning("Admin %s revoked all sessions", current_user.id)
    count = get_auth_service(request).delete_all_refresh_tokens()
    return DeletedCountResponse(message="All refresh tokens deleted successfully", deleted=count)

"""
auth/oauth.py -- Authlib Google OAuth/OIDC client and identity extraction.

build_oauth() returns an authlib registry with Google registered when both
client ID and secret are configured. The lifespan in api/main.py stores it on
app.state.oauth; the Google routes read it from there, which is also how tests
swap in a fake client.

Security notes:
  [H1] Email verification is mandatory. identity_from_token() only reports
       what the provider asserted; AuthService.login_with_identity() rejects
       an identity whose email is missing or not verified. An unverified
       email could be a victim's address added by an attacker.

  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. The session stores the state between the authorization
  redirect and the callback -- never trust state from query params alone.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthIdentity
from core.config import Settings

logger = logging.getLogger("gatehouse.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Return an authlib registry with every configured provider registered."""
    registry = OAuth()
    if google_enabled(settings):
        registry.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    else:
        logger.info("Google OAuth not configured -- /auth/google routes will return 404")
    return registry


def google_enabled(settings: Settings) -> bool:
    return bool(settings.google_client_id and settings.google_client_secret)


def identity_from_token(token: dict, provider: str = "google") -> OAuthIdentity:
    """Normalise an OIDC token response into an OAuthIdentity.

    Google returns an id_token whose parsed claims authlib exposes as
    token["userinfo"]: sub, email, email_verified, given_name, family_name,
    picture. Missing claims become empty values; the service decides whether
    that is acceptable. Providers that omit email_verified are treated as
    unverified.
    """
    userinfo = token.get("userinfo") or {}
    return OAuthIdentity(
        provider=provider,
        subject=userinfo.get("sub"),
        email=userinfo.get("email"),
        email_verified=bool(userinfo.get("email_verified", False)),
        name=userinfo.get("given_name") or "",
        last_name=userinfo.get("family_name") or "",
        picture=userinfo.get("picture"),
    )

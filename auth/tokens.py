"""
auth/tokens.py -- JWT issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets so a leaked access secret cannot mint refresh tokens
       (and the other way round). Expiries are asymmetric: minutes for access
       tokens, weeks for refresh tokens.

  Claims: sub (user id as a string, jose rejects non-string subjects),
       user_id, email, role, name, last_name, register_method, iat, exp, and a
       random jti so two tokens issued in the same second are still distinct
       strings -- each one gets its own refresh_tokens row.

  Verification returns an AuthFailure instead of raising: an expired or
       tampered token is an expected client outcome. Signing failures raise
       IssueTokenError because they mean the service is misconfigured.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import AuthFailure, ErrorKind, IssueTokenError
from auth.models import TokenPair

logger = logging.getLogger("gatehouse.auth.tokens")

ALGORITHM = "HS256"


class TokenIssuer:
    """Signs and verifies access/refresh token pairs.

    Usage:
        issuer = TokenIssuer(access_secret, 900, refresh_secret, 2592000)
        pair = issuer.issue_pair(user.claims())
        claims = issuer.verify_access_token(pair.access_token)
    """

    def __init__(
        self,
        access_secret: str,
        access_expire_seconds: int,
        refresh_secret: str,
        refresh_expire_seconds: int,
    ) -> None:
        self.access_secret = access_secret
        self.access_expire_seconds = access_expire_seconds
        self.refresh_secret = refresh_secret
        self.refresh_expire_seconds = refresh_expire_seconds
        # Two workers: one per half of a token pair.
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="token-signer")

    @classmethod
    def from_settings(cls, settings) -> "TokenIssuer":
        return cls(
            access_secret=settings.jwt_secret,
            access_expire_seconds=settings.jwt_expire_seconds,
            refresh_secret=settings.refresh_jwt_secret,
            refresh_expire_seconds=settings.refresh_jwt_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, claims: dict) -> str:
        return self._sign(claims, self.access_secret, self.access_expire_seconds, "access")

    def issue_refresh_token(self, claims: dict) -> str:
        return self._sign(claims, self.refresh_secret, self.refresh_expire_seconds, "refresh")

    def issue_pair(self, claims: dict) -> TokenPair:
        """Sign the access and refresh token concurrently.

        The two signings share no state. Both must finish before the pair is
        returned; whichever fails first is re-raised and the pair is dropped.
        """
        access = self._pool.submit(self.issue_access_token, claims)
        refresh = self._pool.submit(self.issue_refresh_token, claims)
        wait((access, refresh), return_when=FIRST_EXCEPTION)
        for future in (access, refresh):
            if future.done() and future.exception() is not None:
                raise future.exception()
        return TokenPair(access_token=access.result(), refresh_token=refresh.result())

    def _sign(self, claims: dict, secret: str, expire_seconds: int, kind: str) -> str:
        if not secret:
            raise IssueTokenError(f"Failed to issue {kind} token: signing secret is empty")
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload.update(
            {
                "sub": str(claims.get("user_id")),
                "iat": now,
                "exp": now + timedelta(seconds=expire_seconds),
                "jti": uuid.uuid4().hex,
            }
        )
        try:
            return jwt.encode(payload, secret, algorithm=ALGORITHM)
        except (JWTError, TypeError, ValueError) as exc:
            raise IssueTokenError(f"Failed to issue {kind} token") from exc

    # ------------------------------------------------------------------
    # Read / verify
    # ------------------------------------------------------------------

    @staticmethod
    def decode(token: str) -> dict:
        """Return the claims WITHOUT checking the signature.

        Only for reading metadata (e.g. exp) of a token this process just
        signed. Never feed the result into an authorization decision.
        """
        return jwt.get_unverified_claims(token)

    def expires_at(self, token: str) -> datetime:
        return datetime.fromtimestamp(self.decode(token)["exp"], tz=timezone.utc)

    @staticmethod
    def verify(token: str, secret: str) -> dict | AuthFailure:
        """Check signature and expiry. Returns the claims or an AuthFailure."""
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, str(exc))
        if "user_id" not in payload or "role" not in payload:
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "Token is missing identity claims")
        return payload

    def verify_access_token(self, token: str) -> dict | AuthFailure:
        return self.verify(token, self.access_secret)

    def verify_refresh_token(self, token: str) -> dict | AuthFailure:
        return self.verify(token, self.refresh_secret)

    def close(self) -> None:
        self._pool.shutdown(wait=False)

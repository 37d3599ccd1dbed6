"""Unit tests for auth/tokens.py -- TokenIssuer.

Covers:
- issue_pair() returns two distinct tokens, each verifiable with its own secret only
- claims carry identity, sub as a string, and a jti that makes same-second tokens differ
- expired, tampered and identity-less tokens come back as AuthFailure, never raise
- an empty signing secret raises IssueTokenError, also from issue_pair()
- expires_at() reads exp from the token
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import AuthFailure, ErrorKind, IssueTokenError
from auth.models import RegisterMethod, Role, User
from auth.tokens import ALGORITHM, TokenIssuer

ACCESS_SECRET = "access-" + "s" * 32
REFRESH_SECRET = "refresh-" + "t" * 32


def _claims() -> dict:
    user = User(
        id=7,
        email="a@x.com",
        name="A",
        last_name="B",
        register_method=RegisterMethod.email,
        role=Role.editor,
    )
    return user.claims()


class TestIssue:
    def test_pair_tokens_are_distinct(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_pair(_claims())
        assert pair.access_token
        assert pair.refresh_token
        assert pair.access_token != pair.refresh_token

    def test_claims_round_trip(self, issuer: TokenIssuer) -> None:
        claims = issuer.verify_access_token(issuer.issue_access_token(_claims()))
        assert not isinstance(claims, AuthFailure)
        assert claims["user_id"] == 7
        assert claims["sub"] == "7"
        assert claims["email"] == "a@x.com"
        assert claims["role"] == "editor"
        assert claims["register_method"] == "email"
        assert "jti" in claims

    def test_same_second_tokens_differ(self, issuer: TokenIssuer) -> None:
        assert issuer.issue_refresh_token(_claims()) != issuer.issue_refresh_token(_claims())

    def test_expires_at_matches_refresh_lifetime(self, issuer: TokenIssuer) -> None:
        before = datetime.now(timezone.utc)
        expires = issuer.expires_at(issuer.issue_refresh_token(_claims()))
        expected = before + timedelta(seconds=issuer.refresh_expire_seconds)
        assert abs((expires - expected).total_seconds()) <= 2
        assert expires.tzinfo is not None

    def test_empty_secret_raises(self) -> None:
        issuer = TokenIssuer("", 900, REFRESH_SECRET, 3600)
        try:
            with pytest.raises(IssueTokenError) as exc_info:
                issuer.issue_access_token(_claims())
            assert exc_info.value.kind is ErrorKind.ISSUE_TOKEN
        finally:
            issuer.close()

    def test_pair_propagates_signing_failure(self) -> None:
        issuer = TokenIssuer(ACCESS_SECRET, 900, "", 3600)
        try:
            with pytest.raises(IssueTokenError):
                issuer.issue_pair(_claims())
        finally:
            issuer.close()


class TestVerify:
    def test_secrets_are_not_interchangeable(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_pair(_claims())
        assert isinstance(issuer.verify_refresh_token(pair.access_token), AuthFailure)
        assert isinstance(issuer.verify_access_token(pair.refresh_token), AuthFailure)
        assert not isinstance(issuer.verify_refresh_token(pair.refresh_token), AuthFailure)

    def test_expired_token_fails(self) -> None:
        issuer = TokenIssuer(ACCESS_SECRET, -10, REFRESH_SECRET, 3600)
        try:
            result = issuer.verify_access_token(issuer.issue_access_token(_claims()))
        finally:
            issuer.close()
        assert isinstance(result, AuthFailure)
        assert result.kind is ErrorKind.EXPIRED_OR_INVALID_TOKEN

    def test_tampered_token_fails(self, issuer: TokenIssuer) -> None:
        token = issuer.issue_refresh_token(_claims())
        header, payload, signature = token.split(".")
        tampered = ".".join([header, payload, signature[::-1]])
        result = issuer.verify_refresh_token(tampered)
        assert isinstance(result, AuthFailure)
        assert result.kind is ErrorKind.EXPIRED_OR_INVALID_TOKEN

    def test_garbage_fails(self, issuer: TokenIssuer) -> None:
        assert isinstance(issuer.verify_access_token("not.a.jwt"), AuthFailure)

    def test_token_without_identity_claims_fails(self, issuer: TokenIssuer) -> None:
        token = jwt.encode({"sub": "7"}, issuer.access_secret, algorithm=ALGORITHM)
        result = issuer.verify_access_token(token)
        assert isinstance(result, AuthFailure)
        assert result.kind is ErrorKind.EXPIRED_OR_INVALID_TOKEN

    def test_decode_reads_unverified_claims(self, issuer: TokenIssuer) -> None:
        assert TokenIssuer.decode(issuer.issue_access_token(_claims()))["user_id"] == 7

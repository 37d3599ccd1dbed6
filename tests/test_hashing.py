"""Unit tests for auth/hashing.py -- bcrypt passwords, argon2 refresh tokens.

Covers:
- hash_password() salts (two hashes of one password differ) and never stores plaintext
- verify_password() True/False, CompareError on a corrupted stored hash
- hash_token()/verify_token() compare the whole token, past bcrypt's 72-byte window
- verify_token() raises VerifyLongStringError on a corrupted stored hash
- burn_password_check() never raises, whatever it is fed
"""

import pytest

from auth.errors import CompareError, ErrorKind, VerifyLongStringError
from auth.hashing import CredentialHasher


class TestPasswords:
    def test_hash_is_not_plaintext(self, hasher: CredentialHasher) -> None:
        hashed = hasher.hash_password("password123")
        assert hashed != "password123"
        assert hashed.startswith("$2")

    def test_hashes_are_salted(self, hasher: CredentialHasher) -> None:
        assert hasher.hash_password("password123") != hasher.hash_password("password123")

    def test_verify_correct_password(self, hasher: CredentialHasher) -> None:
        hashed = hasher.hash_password("password123")
        assert hasher.verify_password("password123", hashed) is True

    def test_verify_wrong_password(self, hasher: CredentialHasher) -> None:
        hashed = hasher.hash_password("password123")
        assert hasher.verify_password("password124", hashed) is False

    def test_configured_cost_is_used(self) -> None:
        hashed = CredentialHasher(bcrypt_rounds=5).hash_password("password123")
        assert hashed.split("$")[2] == "05"

    def test_corrupted_hash_raises_compare_error(self, hasher: CredentialHasher) -> None:
        with pytest.raises(CompareError) as exc_info:
            hasher.verify_password("password123", "not-a-bcrypt-hash")
        assert exc_info.value.kind is ErrorKind.COMPARE

    def test_burn_password_check_returns_none(self, hasher: CredentialHasher) -> None:
        assert hasher.burn_password_check("anything at all") is None


class TestRefreshTokens:
    def test_round_trip(self, hasher: CredentialHasher) -> None:
        token = "eyJhbGciOiJIUzI1NiJ9.payload.signature"
        hashed = hasher.hash_token(token)
        assert hashed != token
        assert hashed.startswith("$argon2id$")
        assert hasher.verify_token(token, hashed) is True

    def test_tokens_differing_after_72_bytes_do_not_match(self, hasher: CredentialHasher) -> None:
        """Two JWTs from one issuer share a long header prefix."""
        prefix = "x" * 100
        hashed = hasher.hash_token(prefix + "-first")
        assert hasher.verify_token(prefix + "-second", hashed) is False

    def test_corrupted_hash_raises(self, hasher: CredentialHasher) -> None:
        with pytest.raises(VerifyLongStringError) as exc_info:
            hasher.verify_token("token", "not-an-argon2-hash")
        assert exc_info.value.kind is ErrorKind.VERIFY_LONG_STRING

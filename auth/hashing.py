"""
auth/hashing.py -- Password and refresh-token hashing.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force of low-entropy secrets expensive. The cost is
       configurable through BCRYPT_ROUNDS.

  Refresh tokens: argon2id via argon2-cffi. A refresh token is a signed JWT
       with far more entropy than any password, and it is longer than bcrypt's
       72-byte input limit -- bcrypt would silently compare only a shared
       header prefix. argon2 hashes the whole string.

  A mismatch is a normal answer (False). Only a broken primitive (malformed
  stored hash, input the algorithm refuses) raises, and what it raises is one
  of the fatal errors from auth.errors.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import HashingError, InvalidHashError, VerificationError, VerifyMismatchError

from auth.errors import CompareError, HashError, HashLongStringError, VerifyLongStringError

logger = logging.getLogger("gatehouse.auth.hashing")

DEFAULT_BCRYPT_ROUNDS = 10

# bcrypt reads at most this many bytes of a password.
BCRYPT_MAX_PASSWORD_BYTES = 72


def password_fits_bcrypt(plain: str) -> bool:
    """True if bcrypt will see every byte of ``plain`` (UTF-8 encoded)."""
    return len(plain.encode("utf-8")) <= BCRYPT_MAX_PASSWORD_BYTES


class CredentialHasher:
    """Hash/verify capability for passwords (bcrypt) and refresh tokens (argon2).

    Usage:
        hasher = CredentialHasher(bcrypt_rounds=12)
        stored = hasher.hash_password("correct horse")
        hasher.verify_password("correct horse", stored)  # True
    """

    def __init__(self, bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._rounds = bcrypt_rounds
        self._argon2 = PasswordHasher(type=Type.ID)
        # Timing equalization dummy hash [C1]. Computed once so the first
        # failed login is not measurably slower than the rest.
        self._dummy_hash = self.hash_password("gatehouse_timing_dummy")

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        """Return a salted bcrypt hash of the plaintext password.

        Raises HashError if bcrypt refuses the input (bcrypt 5 rejects
        passwords longer than 72 bytes instead of truncating them).
        """
        try:
            return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            raise HashError("Failed to hash password") from exc

    def verify_password(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the bcrypt hash.

        Raises CompareError when the stored hash is not a bcrypt hash at all --
        that is corrupted data, not a wrong password.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise CompareError("Failed to compare password") from exc

    def burn_password_check(self, plain: str) -> None:
        """Spend one bcrypt comparison on a dummy hash.

        Called when there is no real hash to compare against (unknown email,
        OAuth-only account) so the response time matches a real check.
        """
        try:
            bcrypt.checkpw(plain.encode("utf-8"), self._dummy_hash.encode("utf-8"))
        except ValueError:
            logger.debug("Dummy password check rejected input")

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def hash_token(self, raw: str) -> str:
        try:
            return self._argon2.hash(raw)
        except HashingError as exc:
            raise HashLongStringError("Failed to hash refresh token") from exc

    def verify_token(self, raw: str, hashed: str) -> bool:
        """Return True if ``raw`` is the token that produced ``hashed``."""
        try:
            return self._argon2.verify(hashed, raw)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            raise VerifyLongStringError("Failed to verify refresh token") from exc

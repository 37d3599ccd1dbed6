"""
auth/errors.py -- Error taxonomy for the authentication core.

Two families, kept apart on purpose:

  Domain outcomes (AuthFailure) are *returned*, never raised. A wrong
  password, an unknown email or a stale refresh token is an expected result
  of a request, so service methods type them into their return value
  (``User | AuthFailure``) and the route layer maps the kind to a 4xx.

  Infrastructure faults (AuthInfrastructureError and subclasses) are
  *raised*. A hashing primitive blowing up, a JWT that cannot be signed or a
  database that refuses a write means misconfiguration or an outage. They
  propagate to the exception handler in api/main.py, which logs the
  traceback and returns an opaque 500.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    # Domain -- returned as AuthFailure
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    NO_PASSWORD = "no_password"
    INVALID_PASSWORD = "invalid_password"
    EXPIRED_OR_INVALID_TOKEN = "expired_or_invalid_token"
    UNVERIFIED_IDENTITY = "unverified_identity"
    # Infrastructure -- raised as AuthInfrastructureError
    ISSUE_TOKEN = "issue_token_error"
    PERSISTENCE = "persistence_error"
    CREATION = "creation_error"
    HASH = "hash_error"
    COMPARE = "compare_error"
    HASH_LONG_STRING = "hash_long_string_error"
    VERIFY_LONG_STRING = "verify_long_string_error"


# Local login must not reveal which of these happened [C1].
CREDENTIAL_FAILURES = frozenset({ErrorKind.NOT_FOUND, ErrorKind.NO_PASSWORD, ErrorKind.INVALID_PASSWORD})


@dataclass(frozen=True)
class AuthFailure:
    """An expected, recoverable authentication outcome.

    ``message`` is for internal logs only. The route layer decides what the
    client gets to see.
    """

    kind: ErrorKind
    message: str = ""


# ---------------------------------------------------------------------------
# Infrastructure faults
# ---------------------------------------------------------------------------


class AuthInfrastructureError(Exception):
    """Base class for fatal faults in the auth core. Always maps to HTTP 500."""

    kind: ErrorKind = ErrorKind.PERSISTENCE


class PersistenceError(AuthInfrastructureError):
    """Any storage-layer fault. Wraps the underlying SQLAlchemy exception."""

    kind = ErrorKind.PERSISTENCE


class CreationError(AuthInfrastructureError):
    """The store accepted an insert but the row could not be read back."""

    kind = ErrorKind.CREATION


class IssueTokenError(AuthInfrastructureError):
    kind = ErrorKind.ISSUE_TOKEN


class HashError(AuthInfrastructureError):
    kind = ErrorKind.HASH


class CompareError(AuthInfrastructureError):
    kind = ErrorKind.COMPARE


class HashLongStringError(AuthInfrastructureError):
    kind = ErrorKind.HASH_LONG_STRING


class VerifyLongStringError(AuthInfrastructureError):
    kind = ErrorKind.VERIFY_LONG_STRING

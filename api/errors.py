"""
api/errors.py -- Map AuthFailure kinds to HTTP errors.

Routes call raise_for_failure() when a service returns an AuthFailure. The
message sent to the client is fixed per kind; AuthFailure.message stays in
the server logs.

Local login does not use this table directly: it collapses every credential
failure into one bad_credentials 401 (see routes/v1/auth.py).
"""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException

from auth.errors import AuthFailure, ErrorKind

_STATUS: dict[ErrorKind, tuple[int, str, str]] = {
    ErrorKind.NOT_FOUND: (404, "not_found", "Resource not found."),
    ErrorKind.ALREADY_EXISTS: (409, "already_exists", "A user with that email already exists."),
    ErrorKind.NO_PASSWORD: (401, "bad_credentials", "Invalid email or password."),
    ErrorKind.INVALID_PASSWORD: (401, "bad_credentials", "Invalid email or password."),
    ErrorKind.EXPIRED_OR_INVALID_TOKEN: (401, "invalid_token", "Token is expired or invalid."),
    ErrorKind.UNVERIFIED_IDENTITY: (400, "unverified_identity", "The identity provider did not confirm the email."),
}


def http_error(failure: AuthFailure) -> HTTPException:
    status, code, message = _STATUS.get(failure.kind, (400, failure.kind.value, "Request failed."))
    return HTTPException(status_code=status, detail={"code": code, "message": message})


def raise_for_failure(failure: AuthFailure) -> NoReturn:
    raise http_error(failure)


def bad_credentials() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "bad_credentials", "message": "Invalid email or password."},
    )

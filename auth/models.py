"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores and services do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    user = "user"
    editor = "editor"


class RegisterMethod(str, Enum):
    google = "google"
    email = "email"


@dataclass
class User:
    """An account known to Gatehouse.

    email is the natural key: it is UNIQUE in the users table and is how both
    local login and the Google bridge find an existing account.

    password holds the bcrypt hash, never the plaintext. It is None for
    accounts provisioned through Google -- they have no local password and
    local login rejects them with NO_PASSWORD.
    """

    email: str
    name: str
    last_name: str
    register_method: RegisterMethod
    role: Role = Role.user
    id: int | None = None
    password: str | None = None  # bcrypt hash; None = OAuth-only
    profile_pic: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def claims(self) -> dict:
        """Identity claims embedded in access and refresh tokens."""
        return {
            "user_id": self.id,
            "email": self.email,
            "name": self.name,
            "last_name": self.last_name,
            "role": self.role.value,
            "register_method": self.register_method.value,
        }


@dataclass
class NewUser:
    """Registration input. password is plaintext here and hashed by the service."""

    email: str
    name: str
    last_name: str
    register_method: RegisterMethod = RegisterMethod.email
    role: Role = Role.user
    password: str | None = None
    profile_pic: str | None = None


@dataclass
class RefreshToken:
    """One live session on one device.

    hashed_token is the argon2 hash of the raw refresh JWT. Rows are never
    looked up by the raw token -- the service verifies the presented token
    against every row of the user until one matches.
    """

    user_id: int
    hashed_token: str
    expires_at: datetime
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class SessionPrincipal:
    """A user authenticated by a refresh token, plus the session row it matched."""

    user: User
    session: RefreshToken


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a successful refresh.

    refresh_token is only set when rotation is enabled; otherwise the client
    keeps using the token it presented.
    """

    user: User
    access_token: str
    refresh_token: str | None = None


@dataclass(frozen=True)
class OAuthIdentity:
    """A provider-verified identity assertion, normalised across providers."""

    provider: str
    subject: str | None
    email: str | None
    email_verified: bool
    name: str = ""
    last_name: str = ""
    picture: str | None = None

"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Password hashes never appear in any response model.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.hashing import BCRYPT_MAX_PASSWORD_BYTES, password_fits_bcrypt
from auth.models import User

# Longer passwords are refused rather than silently truncated by bcrypt.
PASSWORD_MAX_LENGTH = BCRYPT_MAX_PASSWORD_BYTES


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and not password_fits_bcrypt(value):
        raise ValueError(f"password must be at most {PASSWORD_MAX_LENGTH} bytes")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"
    editor = "editor"


class RegisterMethodEnum(str, Enum):
    google = "google"
    email = "email"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/local/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    password_within_bcrypt_limit = field_validator("password")(_check_password_bytes)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/local/register."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_LENGTH)
    name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)

    password_within_bcrypt_limit = field_validator("password")(_check_password_bytes)


class RefreshRequest(BaseModel):
    """Optional body for POST /auth/refresh and /auth/logout.

    Browser clients rely on the refresh_token cookie and send no body.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    last_name: str
    role: RoleEnum
    register_method: RegisterMethodEnum
    profile_pic: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            last_name=user.last_name,
            role=user.role.value,
            register_method=user.register_method.value,
            profile_pic=user.profile_pic,
            created_at=user.created_at,
        )


class UserAndTokensResponse(BaseModel):
    """Response for login, register and refresh.

    refresh_token is null on a refresh without rotation: the client keeps
    the token it already holds.
    """

    model_config = ConfigDict(frozen=True)

    user: UserProfile
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class DeletedCountResponse(BaseModel):
    """Response for the session purge endpoints."""

    model_config = ConfigDict(frozen=True)

    message: str
    deleted: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only).

    password is optional: an admin may pre-create an account that will only
    ever sign in through Google.
    """

    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    role: RoleEnum = RoleEnum.user
    register_method: RegisterMethodEnum = RegisterMethodEnum.email
    password: Optional[str] = Field(default=None, min_length=8, max_length=PASSWORD_MAX_LENGTH)
    profile_pic: Optional[str] = Field(default=None, max_length=2048)

    password_within_bcrypt_limit = field_validator("password")(_check_password_bytes)


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/... -- every field optional.

    role changes are admin-only; the route enforces that.
    """

    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=PASSWORD_MAX_LENGTH)
    profile_pic: Optional[str] = Field(default=None, max_length=2048)

    password_within_bcrypt_limit = field_validator("password")(_check_password_bytes)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

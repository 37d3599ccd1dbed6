"""
auth/authenticators.py -- One authenticator per credential scheme.

Each route picks the scheme it accepts and calls that authenticator
explicitly (see auth/dependencies.py). There is no base-class magic that
decides for it:

  LocalAuthenticator        email + password        -> User
  GoogleAuthenticator       OAuthIdentity           -> (User, TokenPair), provisioned if new
  AccessTokenAuthenticator  access JWT              -> User
  RefreshTokenAuthenticator refresh JWT             -> SessionPrincipal

All four return ``principal | AuthFailure`` and never raise for a bad
credential. The Google principal already carries its session, since the
callback has no other step that could open one. They are thin: the logic lives in AuthService.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar

from auth.errors import AuthFailure
from auth.models import OAuthIdentity, SessionPrincipal, TokenPair, User
from auth.service import AuthService

CredentialT = TypeVar("CredentialT")
PrincipalT = TypeVar("PrincipalT")


@dataclass(frozen=True)
class PasswordCredentials:
    email: str
    password: str


class Authenticator(ABC, Generic[CredentialT, PrincipalT]):
    scheme: ClassVar[str]

    def __init__(self, service: AuthService) -> None:
        self.service = service

    @abstractmethod
    def authenticate(self, credential: CredentialT) -> PrincipalT | AuthFailure: ...


class LocalAuthenticator(Authenticator[PasswordCredentials, User]):
    scheme = "local"

    def authenticate(self, credential: PasswordCredentials) -> User | AuthFailure:
        return self.service.validate_credentials(credential.email, credential.password)


class GoogleAuthenticator(Authenticator[OAuthIdentity, tuple[User, TokenPair]]):
    scheme = "google"

    def authenticate(self, credential: OAuthIdentity) -> tuple[User, TokenPair] | AuthFailure:
        return self.service.login_with_identity(credential)


class AccessTokenAuthenticator(Authenticator[str, User]):
    scheme = "access_token"

    def authenticate(self, credential: str) -> User | AuthFailure:
        return self.service.authenticate_access_token(credential)


class RefreshTokenAuthenticator(Authenticator[str, SessionPrincipal]):
    scheme = "refresh_token"

    def authenticate(self, credential: str) -> SessionPrincipal | AuthFailure:
        return self.service.authenticate_refresh_token(credential)

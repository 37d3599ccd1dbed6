"""
auth/service.py -- Session lifecycle: credentials, tokens, refresh, logout.

AuthService composes the three leaf capabilities it is handed at
construction time:

    AuthService(store=UserStore(...), hasher=CredentialHasher(...), issuer=TokenIssuer(...))

Return-value contract:
  Domain outcomes come back as AuthFailure values in the return type
  (``User | AuthFailure``). Infrastructure faults -- a hash primitive, token
  signing or the database failing -- raise AuthInfrastructureError
  subclasses and are never caught here.

Logging:
  The three credential failures (unknown email, passwordless account, wrong
  password) are logged distinctly for operators. The route layer collapses
  them into one response so clients cannot enumerate accounts [C1].

Refresh-token model:
  Multi-session. Every login inserts one refresh_tokens row holding the
  argon2 hash of the refresh JWT. A refresh request verifies the presented
  token against the user's live rows one by one until a hash matches.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.errors import AuthFailure, ErrorKind
from auth.hashing import CredentialHasher
from auth.models import (
    NewUser,
    OAuthIdentity,
    RefreshResult,
    RefreshToken,
    RegisterMethod,
    SessionPrincipal,
    TokenPair,
    User,
)
from auth.store import UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("gatehouse.auth.service")


class AuthService:
    def __init__(
        self,
        store: UserStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        rotate_refresh_tokens: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.rotate_refresh_tokens = rotate_refresh_tokens

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def validate_credentials(self, email: str, password: str) -> User | AuthFailure:
        """Check an email/password pair.

        Runs bcrypt exactly once whatever the outcome, so response time does
        not reveal whether the email exists [C1].
        """
        user = self.store.get_by_email(email)
        if user is None:
            self.hasher.burn_password_check(password)
            logger.info("Credential check failed: no user with email %s", email)
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {email} not found")

        if not user.password:
            self.hasher.burn_password_check(password)
            logger.info(
                "Credential check failed: user %s has no password (register_method=%s)",
                user.id,
                user.register_method.value,
            )
            return AuthFailure(ErrorKind.NO_PASSWORD, "User has no password, try another login method")

        if not self.hasher.verify_password(password, user.password):
            logger.info("Credential check failed: invalid password for user %s", user.id)
            return AuthFailure(ErrorKind.INVALID_PASSWORD, "User password is invalid")

        return user

    def get_user(self, email: str) -> User | AuthFailure:
        user = self.store.get_by_email(email)
        if user is None:
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {email} not found")
        return user

    def register(self, details: NewUser) -> User | AuthFailure:
        """Create an account. Hashes the password when one is supplied.

        The get_by_email() pre-check only saves a bcrypt round for the common
        duplicate case. The store's UNIQUE(email) rejection is what actually
        decides a race between two registrations.
        """
        if self.store.get_by_email(details.email) is not None:
            logger.info("Registration rejected: %s already exists", details.email)
            return AuthFailure(ErrorKind.ALREADY_EXISTS, f"User {details.email} already exists")

        hashed = self.hasher.hash_password(details.password) if details.password else None
        created = self.store.create_user(
            User(
                email=details.email,
                name=details.name,
                last_name=details.last_name,
                register_method=details.register_method,
                role=details.role,
                password=hashed,
                profile_pic=details.profile_pic,
            )
        )
        if isinstance(created, AuthFailure):
            logger.info("Registration lost a race for %s", details.email)
            return created
        logger.info("Registered user %s via %s", created.id, created.register_method.value)
        return created

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: int) -> User | AuthFailure:
        user = self.store.get_by_id(user_id)
        if user is None:
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {user_id} not found")
        return user

    def update_user(self, user_id: int, changes: dict) -> User | AuthFailure:
        """Apply a partial update. A new password is hashed before it is stored."""
        if changes.get("password"):
            changes = {**changes, "password": self.hasher.hash_password(changes["password"])}
        updated = self.store.update_user(user_id, **changes)
        if not isinstance(updated, AuthFailure):
            logger.info("Updated user %s fields %s", user_id, sorted(changes))
        return updated

    def delete_user(self, user_id: int) -> User | AuthFailure:
        """Delete a user. Their refresh tokens go with them."""
        deleted = self.store.delete_user(user_id)
        if deleted is None:
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {user_id} not found")
        logger.info("Deleted user %s", user_id)
        return deleted

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, user: User) -> TokenPair:
        """Open a new session for an already-authenticated user.

        Adds a refresh_tokens row; sessions on other devices stay valid.
        """
        pair = self.issuer.issue_pair(user.claims())
        self._store_refresh_token(user.id, pair.refresh_token)
        logger.info("Issued session for user %s", user.id)
        return pair

    def _store_refresh_token(self, user_id: int, raw_token: str) -> RefreshToken:
        hashed = self.hasher.hash_token(raw_token)
        # exp comes from the token itself so the row and the JWT expire together.
        expires_at = self.issuer.expires_at(raw_token)
        return self.store.create_refresh_token(user_id, hashed, expires_at)

    def validate_refresh_token(self, user_id: int, raw_token: str) -> RefreshToken | AuthFailure:
        """Find the stored row that ``raw_token`` hashes to.

        Linear scan over the user's live rows with early exit. Cost is one
        argon2 verify per live session of this user.
        """
        stored = self.store.get_refresh_tokens(user_id)
        if not stored:
            logger.info("Refresh rejected: user %s has no live refresh tokens", user_id)
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "User has no refresh tokens")

        match: RefreshToken | None = None
        for candidate in stored:
            if self.hasher.verify_token(raw_token, candidate.hashed_token):
                match = candidate
                break

        if match is None:
            logger.info("Refresh rejected: token matches none of user %s's sessions", user_id)
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "Refresh token is invalid")

        if match.expires_at <= datetime.now(timezone.utc):
            logger.info("Refresh rejected: matched session %s is expired", match.id)
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "Refresh token is expired")

        return match

    def authenticate_access_token(self, token: str) -> User | AuthFailure:
        """Resolve a bearer access token to the current user record."""
        claims = self.issuer.verify_access_token(token)
        if isinstance(claims, AuthFailure):
            return claims
        user = self.store.get_by_id(claims["user_id"])
        if user is None:
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "User no longer exists")
        return user

    def authenticate_refresh_token(self, raw_token: str) -> SessionPrincipal | AuthFailure:
        """Resolve a refresh token to its user and stored session.

        Order: JWT signature/expiry (cheap) -> stored-hash scan (argon2) ->
        reload the user so a new token carries the current role.
        """
        claims = self.issuer.verify_refresh_token(raw_token)
        if isinstance(claims, AuthFailure):
            logger.info("Refresh rejected: %s", claims.message)
            return claims

        user_id = claims["user_id"]
        session = self.validate_refresh_token(user_id, raw_token)
        if isinstance(session, AuthFailure):
            return session

        user = self.store.get_by_id(user_id)
        if user is None:
            logger.warning("Refresh rejected: user %s vanished with a live session", user_id)
            return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "User no longer exists")
        return SessionPrincipal(user=user, session=session)

    def reissue(self, principal: SessionPrincipal) -> RefreshResult | AuthFailure:
        """Issue a new access token for an authenticated refresh session.

        With rotation on, the presented session is consumed and replaced.
        Only the request whose delete removes the row gets a new pair; a
        concurrent replay of the same token finds it gone and is rejected.
        """
        user, session = principal.user, principal.session
        if self.rotate_refresh_tokens:
            if not self.store.delete_refresh_token(session.id):
                logger.warning("Refresh rejected: session %s of user %s was already consumed", session.id, user.id)
                return AuthFailure(ErrorKind.EXPIRED_OR_INVALID_TOKEN, "Refresh token was already used")
            pair = self.issuer.issue_pair(user.claims())
            self._store_refresh_token(user.id, pair.refresh_token)
            logger.info("Rotated session %s for user %s", session.id, user.id)
            return RefreshResult(user=user, access_token=pair.access_token, refresh_token=pair.refresh_token)
        return RefreshResult(user=user, access_token=self.issuer.issue_access_token(user.claims()))

    def refresh(self, raw_token: str) -> RefreshResult | AuthFailure:
        """Exchange a refresh token for a new access token."""
        principal = self.authenticate_refresh_token(raw_token)
        if isinstance(principal, AuthFailure):
            return principal
        return self.reissue(principal)

    def logout(self, user_id: int, raw_token: str) -> bool:
        """End the one session ``raw_token`` belongs to.

        Returns False when the token matches no live session of this user
        (already logged out, expired, or someone else's token).
        """
        session = self.validate_refresh_token(user_id, raw_token)
        if isinstance(session, AuthFailure):
            return False
        deleted = self.store.delete_refresh_token(session.id)
        logger.info("User %s logged out of session %s", user_id, session.id)
        return deleted

    def logout_all_devices(self, user_id: int) -> int:
        count = self.store.delete_refresh_tokens_for_user(user_id)
        logger.info("User %s logged out of %d session(s)", user_id, count)
        return count

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def delete_expired_refresh_tokens(self) -> int:
        """Sweep rows past expires_at. Safe alongside live traffic: an
        expired row can never validate again."""
        count = self.store.delete_expired_refresh_tokens()
        logger.info("Deleted %d expired refresh token(s)", count)
        return count

    def delete_all_refresh_tokens(self) -> int:
        count = self.store.delete_all_refresh_tokens()
        logger.warning("Revoked all sessions (%d refresh token(s) deleted)", count)
        return count

    # ------------------------------------------------------------------
    # OAuth bridge
    # ------------------------------------------------------------------

    def resolve_identity(self, identity: OAuthIdentity) -> User | AuthFailure:
        """Find, or provision on first visit, the account for a provider identity.

        Accounts are linked by email. A provider-verified email is taken as
        proof of ownership; anything less fails closed.
        """
        if not identity.email:
            logger.warning("%s identity rejected: no email in assertion", identity.provider)
            return AuthFailure(ErrorKind.UNVERIFIED_IDENTITY, "No email found in profile")
        if not identity.email_verified:
            logger.warning("%s identity rejected: email %s not verified", identity.provider, identity.email)
            return AuthFailure(ErrorKind.UNVERIFIED_IDENTITY, "Email not verified")

        user = self.store.get_by_email(identity.email)
        if user is None:
            logger.info("No user for %s identity %s, provisioning", identity.provider, identity.email)
            user = self.register(
                NewUser(
                    email=identity.email,
                    name=identity.name,
                    last_name=identity.last_name,
                    register_method=RegisterMethod.google,
                    profile_pic=identity.picture,
                )
            )
            if isinstance(user, AuthFailure):
                # Lost a provisioning race; the winner's row is the account.
                user = self.store.get_by_email(identity.email)
                if user is None:
                    return AuthFailure(ErrorKind.NOT_FOUND, f"User {identity.email} not found")
        return user

    def login_with_identity(self, identity: OAuthIdentity) -> tuple[User, TokenPair] | AuthFailure:
        user = self.resolve_identity(identity)
        if isinstance(user, AuthFailure):
            return user
        return user, self.login(user)

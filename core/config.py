"""
core/config.py -- Gatehouse settings (pydantic-settings).

Every knob is an environment variable (or a line in .env) named after the
field in upper case: JWT_SECRET, REFRESH_JWT_EXPIRE_SECONDS, GOOGLE_CLIENT_ID
and so on. Code reads them through get_settings(), never through os.environ.

Three secrets:
  SECRET_KEY          signs the Starlette session cookie (OAuth state)
  JWT_SECRET          signs access tokens
  REFRESH_JWT_SECRET  signs refresh tokens

Security notes:
  [M6] Each secret must be at least 32 characters.
  [M7] With DEBUG off a missing secret stops startup. With DEBUG on it is
       generated per process, so sessions die with the process.
  [M8] JWT_SECRET and REFRESH_JWT_SECRET must differ.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_SECRET_FIELDS = ("secret_key", "jwt_secret", "refresh_jwt_secret")


class Settings(BaseSettings):
    """Runtime configuration. Defaults suit local development with DEBUG=true."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///gatehouse.db"
    # Signs the Starlette session cookie that carries the OAuth state value.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_expire_seconds: int = 15 * 60
    refresh_jwt_secret: str = ""
    refresh_jwt_expire_seconds: int = 30 * 24 * 3600
    # When true, every /auth/refresh call consumes the presented refresh
    # token and hands back a new one.
    rotate_refresh_tokens: bool = False
    bcrypt_rounds: int = 10
    refresh_token_sweep_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Google OAuth (optional -- empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    frontend_redirect_uri: str = "http://localhost:3000/auth/callback"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate each missing secret with a
            warning. Sessions will not survive restart.

        Production mode: refuse to start if any secret is missing.

        Both modes: reject secrets shorter than 32 characters and identical
            access/refresh signing secrets.
        """
        for field in _SECRET_FIELDS:
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, field, value)
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", field.upper())
            if len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.refresh_jwt_secret:
            raise ValueError("JWT_SECRET and REFRESH_JWT_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process. Tests that change the environment
    call get_settings.cache_clear()."""
    return Settings()

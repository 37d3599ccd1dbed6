"""Unit tests for core/config.py -- Settings secret policy.

Covers:
- debug mode generates every missing secret, each distinct and long enough
- production mode refuses to start without secrets
- secrets shorter than 32 characters are rejected in both modes
- identical access and refresh signing secrets are rejected
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD = {
    "secret_key": "k" * 32,
    "jwt_secret": "j" * 32,
    "refresh_jwt_secret": "r" * 32,
}


def test_debug_generates_missing_secrets(monkeypatch) -> None:
    for name in ("SECRET_KEY", "JWT_SECRET", "REFRESH_JWT_SECRET"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(debug=True, _env_file=None)
    assert len(settings.jwt_secret) >= 32
    assert settings.jwt_secret != settings.refresh_jwt_secret
    assert settings.secret_key


def test_production_requires_secrets(monkeypatch) -> None:
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError, match="JWT_SECRET is required"):
        Settings(debug=False, _env_file=None, **{**GOOD, "jwt_secret": ""})


def test_production_with_secrets() -> None:
    settings = Settings(debug=False, _env_file=None, **GOOD)
    assert settings.jwt_expire_seconds == 900
    assert settings.refresh_jwt_expire_seconds == 30 * 24 * 3600
    assert settings.rotate_refresh_tokens is False


@pytest.mark.parametrize("debug", [True, False])
def test_short_secret_rejected(debug: bool) -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=debug, _env_file=None, **{**GOOD, "refresh_jwt_secret": "short"})


def test_identical_signing_secrets_rejected() -> None:
    with pytest.raises(ValidationError, match="must be different"):
        Settings(debug=False, _env_file=None, **{**GOOD, "refresh_jwt_secret": GOOD["jwt_secret"]})

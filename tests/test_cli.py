"""Tests for main.py -- operator CLI.

Covers:
- create-user with --password-stdin and with the interactive prompt
- create-user refuses mismatched prompts, short passwords, passwords over
  72 UTF-8 bytes, malformed emails and duplicate emails
- sweep deletes only expired refresh tokens
- revoke-all asks for confirmation unless --yes is given
- no command prints help and exits 0
"""

import io
from datetime import datetime, timedelta, timezone

import pytest

import main
from auth.models import RegisterMethod, Role, User
from auth.store import UserStore
from core.config import get_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    """Point the CLI at a throwaway SQLite file."""
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture
def store(db_url):
    s = UserStore(db_url)
    yield s
    s.close()


def _seed_user(store: UserStore) -> User:
    user = store.create_user(
        User(email="seed@x.com", name="S", last_name="D", register_method=RegisterMethod.email)
    )
    assert isinstance(user, User)
    return user


class TestCreateUser:
    def test_password_from_stdin(self, store, monkeypatch, capsys) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("password123\n"))
        code = main.main(["create-user", "ops@x.com", "--role", "admin", "--password-stdin"])
        assert code == 0
        assert "Created admin ops@x.com" in capsys.readouterr().out

        user = store.get_by_email("ops@x.com")
        assert user.role is Role.admin
        assert user.register_method is RegisterMethod.email
        assert user.password and user.password != "password123"

    def test_interactive_prompt(self, store, monkeypatch) -> None:
        answers = iter(["password123", "password123"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
        assert main.main(["create-user", "prompt@x.com"]) == 0
        assert store.get_by_email("prompt@x.com").role is Role.user

    def test_mismatched_prompt(self, store, monkeypatch, capsys) -> None:
        answers = iter(["password123", "password124"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
        assert main.main(["create-user", "typo@x.com"]) == 1
        assert "do not match" in capsys.readouterr().out
        assert store.get_by_email("typo@x.com") is None

    def test_short_password(self, store, monkeypatch) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("short\n"))
        assert main.main(["create-user", "short@x.com", "--password-stdin"]) == 1
        assert store.get_by_email("short@x.com") is None

    def test_multibyte_password_over_bcrypt_limit(self, store, monkeypatch, capsys) -> None:
        # 40 characters, 80 bytes
        monkeypatch.setattr("sys.stdin", io.StringIO("\u00e9" * 40 + "\n"))
        assert main.main(["create-user", "long@x.com", "--password-stdin"]) == 1
        assert "at most 72 bytes" in capsys.readouterr().out
        assert store.get_by_email("long@x.com") is None

    def test_multibyte_password_within_limit(self, store, monkeypatch) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("\u00e9" * 36 + "\n"))
        assert main.main(["create-user", "accent@x.com", "--password-stdin"]) == 0
        assert store.get_by_email("accent@x.com") is not None

    def test_malformed_email(self, store, monkeypatch, capsys) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("password123\n"))
        assert main.main(["create-user", "notanemail", "--password-stdin"]) == 1
        assert "Invalid email" in capsys.readouterr().out
        assert store.get_by_email("notanemail") is None

    def test_duplicate(self, store, monkeypatch, capsys) -> None:
        _seed_user(store)
        monkeypatch.setattr("sys.stdin", io.StringIO("password123\n"))
        assert main.main(["create-user", "seed@x.com", "--password-stdin"]) == 1
        assert "already exists" in capsys.readouterr().out


class TestSessions:
    def test_sweep(self, store, capsys) -> None:
        user = _seed_user(store)
        now = datetime.now(timezone.utc)
        store.create_refresh_token(user.id, "expired", now - timedelta(hours=1))
        store.create_refresh_token(user.id, "live", now + timedelta(hours=1))

        assert main.main(["sweep"]) == 0
        assert "Deleted 1 expired" in capsys.readouterr().out
        assert [t.hashed_token for t in store.get_refresh_tokens(user.id, include_expired=True)] == ["live"]

    def test_revoke_all_with_yes(self, store) -> None:
        user = _seed_user(store)
        store.create_refresh_token(user.id, "live", datetime.now(timezone.utc) + timedelta(hours=1))
        assert main.main(["revoke-all", "--yes"]) == 0
        assert store.get_refresh_tokens(user.id) == []

    def test_revoke_all_aborted(self, store, monkeypatch) -> None:
        user = _seed_user(store)
        store.create_refresh_token(user.id, "live", datetime.now(timezone.utc) + timedelta(hours=1))
        monkeypatch.setattr("builtins.input", lambda prompt="": "n")
        assert main.main(["revoke-all"]) == 1
        assert len(store.get_refresh_tokens(user.id)) == 1


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "usage: gatehouse" in capsys.readouterr().out

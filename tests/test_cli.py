"""Tests for the operator CLI in main.py.

Covers:
- create-user (flag and prompted password), validation errors as [!] lines
- ban / unban of known and unknown ids
- tokens listing, revoke (expired vs --all), purge
- delete-user revokes every token of the user
"""

import getpass

import pytest

from auth.tokens import LoginTokenStore
from core.config import get_settings
from main import main

SECRET = "cli-test-secret-0123456789abcdef0123456789"


@pytest.fixture
def db_url(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SECRET_KEY", SECRET)
    monkeypatch.setenv("PASSWORD_HASH_OPTIONS", '{"rounds": 4}')
    monkeypatch.delenv("DATABASE_URL", raising=False)
    get_settings.cache_clear()
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    get_settings.cache_clear()


def _run(db_url: str, *args: str) -> int:
    return main(["--db", db_url, *args])


def _issue(db_url: str, user_id: int):
    tokens = LoginTokenStore(db_url, settings=get_settings())
    try:
        return tokens.issue(user_id)
    finally:
        tokens.close()


class TestCreateUser:
    def test_create_with_password_flag(self, db_url, capsys) -> None:
        assert _run(db_url, "create-user", "alice@example.com", "--username", "alice", "--password", "password123") == 0
        assert "Created user 1 (alice@example.com)." in capsys.readouterr().out

    def test_prompted_password(self, db_url, capsys, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(getpass, "getpass", lambda prompt="": "password123")
        assert _run(db_url, "create-user", "bob@example.com") == 0
        assert "Created user 1" in capsys.readouterr().out

    def test_validation_errors_are_listed(self, db_url, capsys) -> None:
        assert _run(db_url, "create-user", "not-an-email", "--password", "short") == 1
        out = capsys.readouterr().out
        assert "[!] email: Email address is invalid." in out
        assert "[!] password: Password must be between 8 and 32 characters." in out

    def test_duplicate_email(self, db_url, capsys) -> None:
        _run(db_url, "create-user", "carol@example.com", "--password", "password123")
        assert _run(db_url, "create-user", "carol@example.com", "--password", "password123") == 1
        assert "[!] email: Email address already exists." in capsys.readouterr().out


class TestUserFlags:
    def test_ban_and_unban(self, db_url, capsys) -> None:
        _run(db_url, "create-user", "dave@example.com", "--password", "password123")
        assert _run(db_url, "ban", "1") == 0
        assert _run(db_url, "unban", "1") == 0
        out = capsys.readouterr().out
        assert "User 1 banned." in out
        assert "User 1 unbanned." in out

    def test_ban_unknown_user(self, db_url, capsys) -> None:
        assert _run(db_url, "ban", "99") == 1
        assert "No active user with id 99" in capsys.readouterr().out

    def test_delete_user_revokes_tokens(self, db_url, capsys) -> None:
        _run(db_url, "create-user", "erin@example.com", "--password", "password123")
        _issue(db_url, 1)
        _issue(db_url, 1)
        assert _run(db_url, "delete-user", "1") == 0
        assert "User 1 deleted; 2 login token(s) revoked." in capsys.readouterr().out
        assert _run(db_url, "delete-user", "1") == 1


class TestTokens:
    def test_list_tokens(self, db_url, capsys) -> None:
        assert _run(db_url, "tokens", "1") == 0
        assert "has no login tokens" in capsys.readouterr().out
        issued = _issue(db_url, 1)
        _run(db_url, "tokens", "1")
        out = capsys.readouterr().out
        assert issued.selector in out
        assert issued.verifier not in out

    def test_revoke_modes(self, db_url, capsys) -> None:
        _issue(db_url, 1)
        assert _run(db_url, "revoke", "1") == 0
        assert "Revoked 0 expired login token(s) for user 1." in capsys.readouterr().out
        assert _run(db_url, "revoke", "1", "--all") == 0
        assert "Revoked 1 login token(s) for user 1." in capsys.readouterr().out

    def test_purge(self, db_url, capsys) -> None:
        assert _run(db_url, "purge") == 0
        assert "Purged 0 expired login token(s)." in capsys.readouterr().out


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "usage: loginkeep" in capsys.readouterr().out

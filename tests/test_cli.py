"""Tests for main.py -- the administrative CLI.

Each test points DATABASE_URL at a throwaway SQLite file, seeds it through the
stores, runs a command and inspects the database afterwards.
"""

from datetime import timedelta

import pytest

import main
from auth.db import create_auth_engine, utcnow
from auth.models import User
from auth.refresh_tokens import RefreshTokenStore
from auth.reset_tokens import PasswordResetTokenStore
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Yield (users, refresh_store, reset_store) bound to the CLI's database."""
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(get_settings(), "database_url", url)
    engine = create_auth_engine(url)
    yield UserStore(engine), RefreshTokenStore(engine), PasswordResetTokenStore(engine)
    engine.dispose()


def _add_user(users: UserStore, email: str) -> int:
    return users.create_user(User(email=email, hashed_password=hash_password("hunter22")))


class TestRevokeSessions:
    def test_revokes_every_session_of_the_user(self, db, capsys) -> None:
        users, refresh, _ = db
        alice = _add_user(users, "alice@example.com")
        bob = _add_user(users, "bob@example.com")
        refresh.create(alice, "Laptop")
        refresh.create(alice, "Phone")
        bob_token = refresh.create(bob, "Tablet")

        assert main.main(["revoke-sessions", "Alice@Example.com"]) == 0

        assert "Revoked 2 session(s)" in capsys.readouterr().out
        assert all(t.revoked for t in refresh.list_for_user(alice))
        assert refresh.validate(bob_token.token).user_id == bob

    def test_unknown_email_exits_nonzero(self, db, capsys) -> None:
        assert main.main(["revoke-sessions", "ghost@example.com"]) == 1
        assert "No account" in capsys.readouterr().err


class TestPurgeExpired:
    def test_deletes_expired_refresh_and_reset_tokens(self, db, capsys) -> None:
        users, _, _ = db
        uid = _add_user(users, "alice@example.com")
        # Stores whose clock sits in the past issue tokens that are already expired now.
        engine = users.engine
        past = utcnow() - timedelta(days=30)
        RefreshTokenStore(engine, clock=lambda: past).create(uid, "Old laptop")
        PasswordResetTokenStore(engine, clock=lambda: past).create(uid, None)
        live = RefreshTokenStore(engine).create(uid, "New laptop")

        assert main.main(["purge-expired"]) == 0

        assert "Purged 1 refresh token(s) and 1 reset token(s)." in capsys.readouterr().out
        assert [t.id for t in RefreshTokenStore(engine).list_for_user(uid)] == [live.id]


class TestAccountControl:
    def test_disable_user_blocks_and_revokes(self, db) -> None:
        users, refresh, _ = db
        uid = _add_user(users, "alice@example.com")
        refresh.create(uid, "Laptop")

        assert main.main(["disable-user", "alice@example.com"]) == 0

        assert users.get_by_id(uid).is_active is False
        assert all(t.revoked for t in refresh.list_for_user(uid))

    def test_enable_user(self, db) -> None:
        users, _, _ = db
        uid = _add_user(users, "alice@example.com")
        users.set_active(uid, False)

        assert main.main(["enable-user", "alice@example.com"]) == 0
        assert users.get_by_id(uid).is_active is True


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 2
    assert "purge-expired" in capsys.readouterr().out

"""
tests/test_cli.py -- main.py administration commands.

Each test points DATABASE_URL at a throwaway SQLite file via the cached
Settings object, so nothing touches the API's in-memory test databases.
"""

from __future__ import annotations

import sys
from unittest.mock import patch

import pytest

import main as cli
from auth.models import ADMIN_ROLE, CUSTOMER_ROLE
from auth.store import UserStore
from auth.tokens import verify_password
from core.config import get_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(get_settings(), "database_url", url)
    return url


@pytest.fixture
def store(db_url):
    s = UserStore(db_url)
    yield s
    s.close()


def test_init_db_seeds_roles(db_url, capsys):
    cli.init_db()
    assert "Database ready" in capsys.readouterr().out
    s = UserStore(db_url)
    try:
        assert s.get_role_by_name(ADMIN_ROLE) is not None
        assert s.get_role_by_name(CUSTOMER_ROLE) is not None
    finally:
        s.close()


def test_create_admin_new_user(db_url, store, capsys):
    assert cli.create_admin(" Root@BlueInk.io ", "long-enough-pw") == 0
    user = store.get_by_email("root@blueink.io")
    assert user is not None
    assert verify_password("long-enough-pw", user.hashed_password)
    assert store.has_role(user.id, ADMIN_ROLE)
    assert store.has_role(user.id, CUSTOMER_ROLE)
    assert "Granted role 'admin'" in capsys.readouterr().out


def test_create_admin_promotes_existing_user(db_url, store, capsys):
    cli.create_admin("ops@blueink.io", "long-enough-pw")
    capsys.readouterr()
    assert cli.create_admin("ops@blueink.io") == 0
    out = capsys.readouterr().out
    assert "already exists" in out
    assert "already has role" in out


def test_create_admin_short_password(db_url, store):
    assert cli.create_admin("short@blueink.io", "abc") == 1
    assert store.get_by_email("short@blueink.io") is None


def test_create_admin_prompt_mismatch(db_url, store):
    with patch("main.getpass.getpass", side_effect=["first-password", "second-password"]):
        assert cli.create_admin("typo@blueink.io") == 1
    assert store.get_by_email("typo@blueink.io") is None


def test_serve_dispatches_to_uvicorn(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["blueink", "serve", "--port", "9000", "--reload"])
    with patch("uvicorn.run") as run:
        cli.main()
    run.assert_called_once_with("api.main:app", host="127.0.0.1", port=9000, reload=True)


def test_create_admin_exit_code(db_url, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["blueink", "create-admin", "x@blueink.io", "--password", "abc"])
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    assert exc_info.value.code == 1

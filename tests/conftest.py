"""
tests/conftest.py
"""
from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient

from quire.blog import app
from quire.db import get_db, init_db
from quire.models import blank_entry, create_entry, create_user

CSRF = "test-token"          # shared constant so the token matches the session
ADMIN_PASSWORD = "correct horse"


@pytest.fixture(autouse=True)
def _configure_app(tmp_path: Path) -> Generator[None, None, None]:
    """
    Point the app at a brand-new sqlite file for every test and create
    the admin account (id 1).
    """
    db_file = tmp_path / "test.sqlite3"
    old = dict(app.config)
    app.config.update(
        TESTING=True,
        DATABASE=str(db_file),
        SESSION_COOKIE_SECURE=False,
        RATELIMIT_ENABLED=False,
    )
    with app.app_context():
        init_db()
        create_user(
            name="admin",
            email="Admin@Example.com",
            password=ADMIN_PASSWORD,
            db=get_db(),
        )
    yield
    app.config.clear()
    app.config.update(old)


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def admin(client: FlaskClient) -> FlaskClient:
    """The same client, logged in as the admin with a known CSRF token."""
    with client.session_transaction() as sess:
        sess["user"] = 1
        sess["csrf"] = CSRF
    return client


@pytest.fixture
def make_entry():
    """Insert an entry straight through the model layer, return its id."""

    def _make(entry_type: str = "post", **attrs) -> int:
        attrs.setdefault("title", "A title")
        attrs.setdefault("body", "Some *body*")
        entry_id, errors = create_entry(
            entry_type, blank_entry(entry_type, **attrs), user_id=1, db=get_db()
        )
        assert errors == []
        return entry_id

    return _make

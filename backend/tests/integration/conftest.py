"""
tests/integration/conftest.py — Fixtures for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points SQLAlchemy at an in-memory SQLite database and creates the
    records table itself.
  - Between tests every record row is deleted, so tests are isolated.
  - Mirror pushes run inline (SHEET_SYNC_INLINE) so tests can assert on the
    patched requests calls right after the HTTP response.

Helper functions (register, make_group, make_expense, ...) live in
helpers.py as plain functions so they can be called with arbitrary
arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest

from backend.app import create_app
from backend.app.extensions import SYNC_DISPATCHER_KEY, db as _db
from backend.app.models.record import Record


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    The factory already ran db.create_all() for TESTING; teardown drops the
    table and stops the mirror dispatcher.
    """
    flask_app = create_app("testing")

    yield flask_app

    flask_app.extensions[SYNC_DISPATCHER_KEY].shutdown()
    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all records after every test.

    autouse=True means this runs around EVERY test in the integration suite
    without needing to be declared in each test function.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.query(Record).delete()
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()

"""
extensions.py — Flask extension singletons and per-app service accessors.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from backend.app.extensions import db, ma

Routes never build a record store or a sync dispatcher themselves. They call
get_store() / get_sync_dispatcher(), which read what the factory registered
in app.extensions.
"""

from flask import current_app
from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Marshmallow instance — available for SQLAlchemy model serialization helpers.
# Import as:  from backend.app.extensions import ma
#
# IMPORTANT — schema inheritance rule:
#   All validation Schema classes (in app/schemas/) must inherit from
#   marshmallow.Schema directly, NOT from ma.Schema.
#
#   Reason: ma.Schema requires an active Flask application context. Unit tests
#   in tests/unit/ run without a Flask app, and every schema there is
#   instantiated bare.
#
#   Correct:
#       from marshmallow import Schema, fields
#       class ExpenseInputSchema(Schema): ...
#
#   Incorrect:
#       class ExpenseInputSchema(ma.Schema): ...   # breaks unit tests
ma = Marshmallow()

MEMORY_STORE_KEY    = "splitplus.memory_store"
SYNC_DISPATCHER_KEY = "splitplus.sync_dispatcher"


def get_store():
    """
    The record store for the current request.

    STORE_BACKEND=sql    → a SqlRecordStore over the request-scoped db.session
    STORE_BACKEND=memory → the app-wide InMemoryRecordStore
    """
    from backend.app.store.sql_record_store import SqlRecordStore

    memory_store = current_app.extensions.get(MEMORY_STORE_KEY)
    if memory_store is not None:
        return memory_store
    return SqlRecordStore(db.session)


def get_sync_dispatcher():
    return current_app.extensions[SYNC_DISPATCHER_KEY]

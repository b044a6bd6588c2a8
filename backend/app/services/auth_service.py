"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - User registration and credential validation
  - JWT access token creation (HS256)
  - Password hashing (bcrypt) and verification

Layer rules:
  - No imports from routes or schemas other than the record schema.
  - Writes go through store.put(); the route commits.
  - current_app.config is read ONLY for JWT_SECRET_KEY, JWT expiry and the
    bcrypt cost factor.

Token design:
  - Access token: JWT, HS256, sub = user id (opaque string).
  - The authenticated user id is all the rest of the system ever sees.

Password storage:
  - Hashed with bcrypt (cost factor from config BCRYPT_LOG_ROUNDS, default 12)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app

from backend.app.errors import AppError, ErrorCode
from backend.app.models.user import User
from backend.app.schemas.auth_schema import user_record_schema
from backend.app.store.record_store import USERS, RecordStore


# ── Private helpers ────────────────────────────────────────────────────────

def _create_access_token(user_id: str) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user id), iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    expiry = now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": expiry,
        # Guarantees each issued token is unique even if generated in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "username": user.username,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def find_user_by_username(username: str, store: RecordStore) -> User | None:
    """Case-insensitive username lookup."""
    wanted = username.lower()
    for record in store.list(USERS):
        if record.get("username", "").lower() == wanted:
            return user_record_schema.load(record)
    return None


def get_user(user_id: str, store: RecordStore) -> User | None:
    record = store.get(USERS, user_id)
    return user_record_schema.load(record) if record is not None else None


# ── Public service functions ───────────────────────────────────────────────

def register_user(username: str, password: str, store: RecordStore) -> dict:
    """
    Creates a new user account and issues an access token.

    Raises:
      AppError(DUPLICATE_USERNAME, 409) — username already taken (any case)

    Returns: {"user": {...}, "access_token": "..."}
    """
    if find_user_by_username(username, store) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_USERNAME,
            f"The username '{username}' is already taken.",
            409,
            field="username",
        )

    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    password_hash = bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")

    user = User(
        id=uuid.uuid4().hex,
        username=username,
        password_hash=password_hash,
        created_at=datetime.now(timezone.utc),
    )
    store.put(USERS, user_record_schema.dump(user))

    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def login_user(username: str, password: str, store: RecordStore) -> dict:
    """
    Validates credentials and issues a new access token.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — username not found or password wrong.
      Uses the same error for both to avoid username enumeration.
    """
    user = find_user_by_username(username, store)

    if user is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The username or password is incorrect.",
            401,
        )

    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def get_current_user(user_id: str, store: RecordStore) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — the id in the token no longer exists.
    """
    user = get_user(user_id, store)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return build_user_dict(user)


def lookup_user(username: str, store: RecordStore) -> dict:
    """Public profile for a username, matched case-insensitively. 404 if unknown."""
    user = find_user_by_username(username, store)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User '{username}' not found.",
            404,
        )
    return build_user_dict(user)

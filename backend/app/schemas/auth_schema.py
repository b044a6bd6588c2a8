"""
schemas/auth_schema.py — Marshmallow schemas for authentication and users.

Validation responsibility:
  - This file: field types, lengths, regex patterns.
  - services/auth_service.py: DUPLICATE_USERNAME (requires a store lookup).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, post_load, validate, validates

from backend.app.models.user import User


class RegisterSchema(Schema):
    """
    POST /auth/register

    username : 3–50 chars, alphanumeric + underscore only
    password : min 8 chars, at least one letter and one digit
    """

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_]+$",
                error="Username may only contain letters, numbers, and underscores.",
            ),
        ],
    )

    password = fields.Str(required=True, load_only=True)

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")


class LoginSchema(Schema):
    """POST /auth/login — credential correctness is checked in auth_service.py."""

    username = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)


class UserRecordSchema(Schema):
    """User ↔ record-store dict. The password hash never leaves the store layer."""

    class Meta:
        unknown = EXCLUDE

    id = fields.Str(required=True)
    username = fields.Str(required=True)
    password_hash = fields.Str(required=True)
    created_at = fields.DateTime(allow_none=True, load_default=None)

    @post_load
    def make_user(self, data: dict, **kwargs) -> User:
        return User(**data)


user_record_schema = UserRecordSchema()

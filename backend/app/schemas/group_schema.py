"""
schemas/group_schema.py — Marshmallow schemas for groups and membership.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    storage settings coherence.
  - services/group_service.py:
      - caller must be a member / the creator
      - USER_NOT_FOUND, ALREADY_MEMBER, GROUP_NOT_FOUND (require store lookups)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.group import Group, StorageType


def _validate_non_empty_after_trim(value: str) -> None:
    """Raises ValidationError if the string is blank or contains only whitespace."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class _StorageFieldsMixin(Schema):

    storage_type = fields.Enum(
        StorageType,
        load_default=StorageType.LOCAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_STORAGE_TYPE},
    )

    # The Apps Script web app URL. Only meaningful for SHEET groups.
    connection_string = fields.Url(
        load_default=None,
        allow_none=True,
        schemes={"https", "http"},
        require_tld=False,
    )

    @validates_schema
    def validate_storage(self, data: dict, **kwargs) -> None:
        if data.get("storage_type") == StorageType.SHEET and not data.get("connection_string"):
            raise ValidationError(
                {"connection_string": ["connection_string is required for SHEET storage."]}
            )


class CreateGroupSchema(_StorageFieldsMixin):
    """
    POST /groups

    The creator becomes the first active member. Every id in member_ids
    (other than the creator) is invited and stays pending until accepted.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    member_ids = fields.List(fields.Str(), load_default=list)


class StorageSettingsSchema(_StorageFieldsMixin):
    """PUT /groups/:id/storage"""


class UserRefSchema(Schema):
    """POST /groups/:id/invites — invitee by id or by username."""

    user_id = fields.Str(load_default=None)
    username = fields.Str(load_default=None)

    @validates_schema
    def validate_one_of(self, data: dict, **kwargs) -> None:
        if not data.get("user_id") and not data.get("username"):
            raise ValidationError(
                {"user_id": ["Either user_id or username is required."]}
            )


# ── Record schema ──────────────────────────────────────────────────────────

class GroupRecordSchema(Schema):
    """
    Group ↔ record-store dict.

    Older records may lack the membership workflow lists or `created_by`;
    they load with empty lists and the first member as creator.
    """

    class Meta:
        unknown = EXCLUDE

    id = fields.Str(required=True)
    name = fields.Str(required=True)
    created_by = fields.Str(load_default=None, allow_none=True)
    members = fields.List(fields.Str(), load_default=list)
    pending_members = fields.List(fields.Str(), load_default=list)
    join_requests = fields.List(fields.Str(), load_default=list)
    storage_type = fields.Enum(StorageType, by_value=True, load_default=StorageType.LOCAL)
    connection_string = fields.Str(load_default=None, allow_none=True)
    created_at = fields.DateTime(allow_none=True, load_default=None)

    @post_load
    def make_group(self, data: dict, **kwargs) -> Group:
        if not data.get("created_by"):
            data["created_by"] = data["members"][0] if data["members"] else ""
        return Group(**data)


group_record_schema = GroupRecordSchema()

"""
schemas/expense_schema.py — Marshmallow schemas for expenses.

Two families live here:

  Request schemas (ExpenseInputSchema)
      Field types, lengths and the split policy enum. They do NOT check that
      split inputs add up; that is the split calculator's job, because the
      client must get the computed sum back in the error.

  Record schemas (ExpenseRecordSchema, SplitRecordSchema)
      The shape an Expense takes inside the record store. Amounts are dumped
      as strings. Loading is lenient on numbers: a malformed or missing amount
      in an old record becomes 0 instead of making the whole group unreadable.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
)

from backend.app.errors import ErrorCode
from backend.app.models.expense import Expense, Split, SplitType
from backend.app.services.split_calculator import parse_split_input


# ── Shared non-empty string validator ─────────────────────────────────────
#
# validate.Length(min=1) alone allows whitespace-only strings like "   ".
# This validator strips first then checks.
# ──────────────────────────────────────────────────────────────────────────

def _validate_non_empty_after_trim(value: str) -> None:
    """Raises ValidationError if the string is blank or contains only whitespace."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class LenientDecimal(fields.Field):
    """
    Decimal field that never fails to load.

    Serialises Decimal → str. Deserialises anything through
    parse_split_input(), so "", None, "abc" and NaN all load as Decimal("0").
    """

    def deserialize(self, value, attr=None, data=None, **kwargs):
        if value is None:
            return Decimal("0")
        return super().deserialize(value, attr, data, **kwargs)

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return str(value)

    def _deserialize(self, value, attr, data, **kwargs):
        return parse_split_input(value)


# ── Request schema ─────────────────────────────────────────────────────────

class ExpenseInputSchema(Schema):
    """
    POST /groups/:id/expenses and PUT /expenses/:id

    PUT is a full replacement, so the same schema serves both.

    split_inputs maps user_id → raw value. For EXACT the value is an amount,
    for PERCENTAGE it is a percentage. Values stay raw (string, number or
    null) — parsing and defaulting to zero is done by the split calculator.
    split_inputs is ignored for EQUAL splits.

    Checks NOT in this schema (belong in services):
      - amount > 0                      → split_calculator (InvalidAmountError)
      - split inputs add up             → split_calculator (SplitMismatchError)
      - paid_by is a group member       → expense_service
      - split_inputs users are members  → expense_service
    """

    class Meta:
        unknown = EXCLUDE

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # Type check only. Positivity is the calculator's InvalidAmountError.
    amount = fields.Decimal(required=True, allow_nan=False)

    paid_by = fields.Str(
        required=True,
        validate=validate.Length(min=1, error="paid_by must not be empty."),
    )

    split_type = fields.Enum(
        SplitType,
        load_default=SplitType.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    split_inputs = fields.Dict(
        keys=fields.Str(),
        values=fields.Raw(allow_none=True),
        load_default=dict,
    )


# ── Record schemas ─────────────────────────────────────────────────────────

class SplitRecordSchema(Schema):

    class Meta:
        unknown = EXCLUDE

    user_id = fields.Str(required=True)
    amount = LenientDecimal(load_default=Decimal("0"))

    @post_load
    def make_split(self, data: dict, **kwargs) -> Split:
        return Split(**data)


class ExpenseRecordSchema(Schema):
    """
    Expense ↔ record-store dict.

    Keys are snake_case. `split_among` is only ever read (legacy records);
    it is dumped back unchanged so an update never loses it.
    """

    class Meta:
        unknown = EXCLUDE

    id = fields.Str(required=True)
    group_id = fields.Str(required=True)
    description = fields.Str(load_default="")
    amount = LenientDecimal(load_default=Decimal("0"))
    paid_by = fields.Str(required=True)
    split_type = fields.Enum(SplitType, by_value=True, load_default=SplitType.EQUAL)
    splits = fields.List(fields.Nested(SplitRecordSchema), load_default=list)
    created_at = fields.DateTime(allow_none=True, load_default=None)
    split_among = fields.List(fields.Str(), load_default=list)

    @post_load
    def make_expense(self, data: dict, **kwargs) -> Expense:
        return Expense(**data)


expense_record_schema = ExpenseRecordSchema()


def serialize_expense(expense: Expense) -> dict:
    """API representation of an expense. Amounts as strings."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "description": expense.description,
        "amount": str(expense.amount),
        "paid_by": expense.paid_by,
        "split_type": expense.split_type.value,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "splits": [
            {"user_id": s.user_id, "amount": str(s.amount)}
            for s in expense.splits
        ],
    }

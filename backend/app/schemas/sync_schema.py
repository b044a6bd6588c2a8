"""
schemas/sync_schema.py — Wire format of the spreadsheet mirror.

The mirror is tabular, one row per expense:

    id | groupId | description | amount | paidBy | splits | splitType | createdAt

Differences from the record store shape:
  - keys are camelCase
  - `splits` is JSON-encoded text: '[{"userId": "...", "amount": "..."}]'
  - `createdAt` is epoch milliseconds

Loading is lenient. Spreadsheet cells come back as whatever type the sheet
decided on, so numbers may arrive as strings and vice versa. A `splits` cell
that is not valid JSON loads as an empty list.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

from marshmallow import EXCLUDE, Schema, fields, post_load

from backend.app.models.expense import Expense, Split, SplitType
from backend.app.services.split_calculator import parse_split_input


class EpochMillis(fields.Field):
    """datetime ↔ integer milliseconds since the Unix epoch (UTC)."""

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            if text.lstrip("-").isdigit():
                return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
            try:
                # Sheets may hand back an ISO date string for a formatted cell.
                return datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
        return None


class CellText(fields.Str):
    """String field that also accepts the numbers a sheet cell may turn text into."""

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        return super()._deserialize(value, attr, data, **kwargs)


class JsonEncodedSplits(fields.Field):
    """[Split] ↔ JSON text of [{userId, amount}]."""

    def _serialize(self, value, attr, obj, **kwargs):
        return json.dumps([
            {"userId": s.user_id, "amount": str(s.amount)}
            for s in value or []
        ])

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, str):
            try:
                value = json.loads(value) if value.strip() else []
            except ValueError:
                return []
        if not isinstance(value, list):
            return []

        splits = []
        for item in value:
            if isinstance(item, dict) and item.get("userId"):
                splits.append(Split(
                    user_id=str(item["userId"]),
                    amount=parse_split_input(item.get("amount")),
                ))
        return splits


class WireExpenseSchema(Schema):
    """Expense ↔ one row of the mirror's Expenses sheet."""

    class Meta:
        unknown = EXCLUDE

    id = CellText(required=True)
    group_id = fields.Str(data_key="groupId", load_default=None, allow_none=True)
    description = CellText(load_default="")
    amount = fields.Method("dump_amount", "load_amount", load_default=Decimal("0"))
    paid_by = CellText(data_key="paidBy", required=True)
    splits = JsonEncodedSplits(load_default=list)
    split_type = fields.Method(
        "dump_split_type", "load_split_type",
        data_key="splitType",
        load_default=SplitType.EQUAL,
    )
    created_at = EpochMillis(data_key="createdAt", load_default=None, allow_none=True)

    def dump_amount(self, expense: Expense) -> str:
        return str(expense.amount)

    def load_amount(self, value) -> Decimal:
        return parse_split_input(value)

    def dump_split_type(self, expense: Expense) -> str:
        return expense.split_type.value

    def load_split_type(self, value) -> SplitType:
        try:
            return SplitType(str(value).upper())
        except ValueError:
            return SplitType.EQUAL

    @post_load
    def make_expense(self, data: dict, **kwargs) -> Expense:
        return Expense(**data)


class WireMemberSchema(Schema):
    """One row of the mirror's Members sheet."""

    id = fields.Str(required=True)
    username = fields.Str(required=True)
    status = fields.Str(required=True)


wire_expense_schema = WireExpenseSchema()
wire_member_schema = WireMemberSchema()

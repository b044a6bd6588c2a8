"""
models/expense.py — Expense entity and split policy enum.

Plain dataclasses: the record store persists them through
schemas/expense_schema.py. No business logic. No imports from services.

Key design points:
  - `amount` and split amounts are Decimal — never float.
  - `split_type` is kept for display and edit-repopulation only; the balance
    engine reads `splits`.
  - `split_among` exists only on legacy records written before `splits`
    was introduced. New expenses never set it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


class SplitType(str, enum.Enum):
    EQUAL      = "EQUAL"
    EXACT      = "EXACT"
    PERCENTAGE = "PERCENTAGE"


@dataclass
class Split:
    user_id: str
    amount: Decimal


@dataclass
class Expense:
    group_id: str
    description: str
    amount: Decimal
    paid_by: str
    split_type: SplitType = SplitType.EQUAL
    splits: list[Split] = field(default_factory=list)
    id: str | None = None
    created_at: datetime | None = None
    split_among: list[str] = field(default_factory=list)

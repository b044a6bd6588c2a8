"""
services/split_calculator.py — Per-member split amounts for an expense.

Pure functions: no Flask, no store, no I/O. Given a total and a split policy
they return the `splits` list stored on an expense, or raise a validation
error that the caller can show as-is.

Policies:
  EQUAL       total / n for every member. Plain Decimal division, no
              quantisation and no remainder redistribution. The residual of
              at most (n-1) units in the last significant digit is accepted.
  EXACT       one split per member with the parsed raw amount (missing → 0).
              Sum must equal the total within 0.01.
  PERCENTAGE  one split per member with pct / 100 * total (missing → 0).
              Percentages must sum to 100 within 0.1 points.

Raw input parsing is deliberately permissive: a value that does not parse
becomes 0 instead of an error. See parse_split_input().

No currency rounding happens here. Rounding to cents is a display concern.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation

from backend.app.errors import EmptyMemberSetError, InvalidAmountError, SplitMismatchError
from backend.app.models.expense import Split, SplitType

EXACT_TOLERANCE      = Decimal("0.01")   # currency minor unit
PERCENTAGE_TOLERANCE = Decimal("0.1")    # percentage points
HUNDRED              = Decimal("100")

# Amounts must be below 10 ** MAX_AMOUNT_DIGITS. Bigger values overflow the
# default Decimal context once they are added up.
MAX_AMOUNT_DIGITS = 15

_ZERO = Decimal("0")


def _in_range(value: Decimal) -> bool:
    # adjusted() reads the exponent without rounding, so it is safe on
    # values the context could not hold.
    return value.is_finite() and value.adjusted() < MAX_AMOUNT_DIGITS


# Leading numeric prefix, the way a browser's parseFloat reads "12.5abc" as 12.5.
_NUMERIC_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


# ── Input parsing ──────────────────────────────────────────────────────────

def parse_split_input(raw: object) -> Decimal:
    """
    Parses one raw split input into a Decimal. Never raises.

    None, "", booleans, non-finite or out-of-range numbers (10 ** 15 and up)
    and text without a numeric prefix all become Decimal("0").

        parse_split_input("12.50")   → Decimal("12.50")
        parse_split_input(" 7abc")   → Decimal("7")
        parse_split_input("abc")     → Decimal("0")
        parse_split_input(None)      → Decimal("0")
    """
    if raw is None or isinstance(raw, bool):
        return _ZERO

    if isinstance(raw, Decimal):
        return raw if _in_range(raw) else _ZERO

    if isinstance(raw, int):
        value = Decimal(raw)
        return value if _in_range(value) else _ZERO

    if isinstance(raw, float):
        # str() gives the shortest repr, so 0.1 becomes Decimal("0.1").
        if not math.isfinite(raw):
            return _ZERO
        value = Decimal(str(raw))
        return value if _in_range(value) else _ZERO

    if isinstance(raw, str):
        match = _NUMERIC_PREFIX.match(raw)
        if match is None:
            return _ZERO
        try:
            value = Decimal(match.group(1))
        except InvalidOperation:
            return _ZERO
        return value if _in_range(value) else _ZERO

    return _ZERO


def validate_total(total: object) -> Decimal:
    """
    Returns the total as a Decimal, or raises InvalidAmountError if it is not
    a positive finite number below 10 ** MAX_AMOUNT_DIGITS. Unlike split
    inputs, the total is never defaulted to zero.
    """
    if total is None or isinstance(total, bool):
        raise InvalidAmountError(total)

    if isinstance(total, Decimal):
        value = total
    else:
        try:
            value = Decimal(str(total).strip())
        except InvalidOperation:
            raise InvalidAmountError(total)

    if not _in_range(value) or value <= _ZERO:
        raise InvalidAmountError(total)
    return value


def _unique(member_ids: Iterable[str]) -> list[str]:
    """Member ids in their given order, each at most once."""
    return list(dict.fromkeys(member_ids))


# ── Policies ───────────────────────────────────────────────────────────────

def compute_equal_splits(total: Decimal, member_ids: Iterable[str]) -> list[Split]:
    """
    Every member gets exactly total / n.

    Raises EmptyMemberSetError when there are no members.
    """
    ids = _unique(member_ids)
    if not ids:
        raise EmptyMemberSetError()

    share = total / len(ids)
    return [Split(user_id=uid, amount=share) for uid in ids]


def compute_exact_splits(
        total: Decimal,
        member_ids: Iterable[str],
        raw_inputs: Mapping[str, object] | None,
) -> list[Split]:
    """
    Every member gets the amount typed for them (missing or unparseable → 0).

    Raises SplitMismatchError(computed, expected) when the amounts are more
    than 0.01 away from the total.
    """
    raw_inputs = raw_inputs or {}
    splits = [
        Split(user_id=uid, amount=parse_split_input(raw_inputs.get(uid)))
        for uid in _unique(member_ids)
    ]

    computed = sum((s.amount for s in splits), _ZERO)
    if abs(computed - total) > EXACT_TOLERANCE:
        raise SplitMismatchError(computed=computed, expected=total)
    return splits


def compute_percentage_splits(
        total: Decimal,
        member_ids: Iterable[str],
        raw_inputs: Mapping[str, object] | None,
) -> list[Split]:
    """
    Every member gets pct / 100 * total (missing or unparseable pct → 0).

    Raises SplitMismatchError(computed, 100, unit="percent") when the
    percentages are more than 0.1 points away from 100.
    """
    raw_inputs = raw_inputs or {}
    ids = _unique(member_ids)
    percentages = [parse_split_input(raw_inputs.get(uid)) for uid in ids]

    pct_sum = sum(percentages, _ZERO)
    if abs(pct_sum - HUNDRED) > PERCENTAGE_TOLERANCE:
        raise SplitMismatchError(computed=pct_sum, expected=HUNDRED, unit="percent")

    return [
        Split(user_id=uid, amount=(pct / HUNDRED) * total)
        for uid, pct in zip(ids, percentages)
    ]


def compute_splits(
        split_type: SplitType,
        total: object,
        member_ids: Iterable[str],
        raw_inputs: Mapping[str, object] | None = None,
) -> list[Split]:
    """
    Validates the total, then applies the policy.

    Raises:
        InvalidAmountError   — total is not a positive finite number
        EmptyMemberSetError  — EQUAL split with no members
        SplitMismatchError   — EXACT / PERCENTAGE inputs do not add up
    """
    amount = validate_total(total)

    if split_type == SplitType.EQUAL:
        return compute_equal_splits(amount, member_ids)
    if split_type == SplitType.EXACT:
        return compute_exact_splits(amount, member_ids, raw_inputs)
    if split_type == SplitType.PERCENTAGE:
        return compute_percentage_splits(amount, member_ids, raw_inputs)

    raise ValueError(f"Unknown split type: {split_type!r}")

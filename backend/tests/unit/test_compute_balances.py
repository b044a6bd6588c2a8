"""
tests/unit/test_compute_balances.py — Unit tests for balance_service.compute_balances.

What this file proves:
  - Payer is credited for the full expense amount they fronted
  - Each split participant is debited their split portion
  - Every current member appears in the result even with a zero balance
  - Ids that are no longer members keep their balance entry
  - The balance sum is zero when every expense is fully split
  - Recomputing over the same expenses gives the same result, in any order
  - The three-member scenario: EQUAL 30 by A, EXACT 60 by B, then deleting
    the second expense restores the first state
  - Legacy records: empty splits with split_among are debited equally;
    empty splits without split_among credit the payer only
  - Malformed or out-of-range amounts count as zero instead of raising

Unit test constraints:
  - No database, no Flask, no auth context.
  - compute_balances takes plain Expense objects — no mocking required.
"""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from backend.app.models.expense import Expense, Split, SplitType
from backend.app.services.balance_service import compute_balances
from backend.app.services.split_calculator import compute_splits


# ── Factory helpers ────────────────────────────────────────────────────────

def _expense(paid_by: str, amount: str, splits: dict[str, str] | None = None, **kwargs) -> Expense:
    return Expense(
        group_id="g1",
        description="test",
        amount=Decimal(amount),
        paid_by=paid_by,
        splits=[Split(user_id=uid, amount=Decimal(a)) for uid, a in (splits or {}).items()],
        **kwargs,
    )


def _computed_expense(
        paid_by: str,
        amount: str,
        split_type: SplitType,
        members: list[str],
        inputs: dict | None = None,
) -> Expense:
    return Expense(
        group_id="g1",
        description="computed",
        amount=Decimal(amount),
        paid_by=paid_by,
        split_type=split_type,
        splits=compute_splits(split_type, amount, members, inputs),
    )


# ── Basic formula ──────────────────────────────────────────────────────────

def test_payer_credited_split_participants_debited():
    """
    Alice pays 100, split 60 Alice / 40 Bob.
    Alice net = +100 - 60 = +40.  Bob net = -40.  Sum = 0.
    """
    result = compute_balances(
        [_expense("alice", "100.00", {"alice": "60.00", "bob": "40.00"})],
        ["alice", "bob"],
    )

    assert result["alice"] == Decimal("40.00"), "Alice should be owed 40.00"
    assert result["bob"] == Decimal("-40.00"), "Bob should owe 40.00"
    assert sum(result.values()) == Decimal("0")


def test_balance_sum_zero_multiple_expenses():
    """Alice pays 90 split three ways, Bob pays 60 split two ways."""
    expenses = [
        _expense("alice", "90.00", {"alice": "30", "bob": "30", "carol": "30"}),
        _expense("bob", "60.00", {"bob": "30", "carol": "30"}),
    ]
    result = compute_balances(expenses, ["alice", "bob", "carol"])

    assert result == {
        "alice": Decimal("60.00"),
        "bob": Decimal("0.00"),
        "carol": Decimal("-60.00"),
    }
    assert sum(result.values()) == Decimal("0")


def test_members_without_expenses_appear_with_zero():
    result = compute_balances([], ["alice", "bob", "carol"])
    assert result == {
        "alice": Decimal("0"),
        "bob": Decimal("0"),
        "carol": Decimal("0"),
    }


def test_no_members_and_no_expenses_is_empty():
    assert compute_balances([], []) == {}


def test_former_member_keeps_balance_entry():
    """Dave was split into an expense and then left the group."""
    expenses = [_expense("alice", "30", {"alice": "15", "dave": "15"})]
    result = compute_balances(expenses, ["alice", "bob"])

    assert result["dave"] == Decimal("-15")
    assert result["alice"] == Decimal("15")
    assert result["bob"] == Decimal("0")
    assert sum(result.values()) == Decimal("0")


def test_payer_who_left_keeps_credit():
    expenses = [_expense("erin", "20", {"alice": "10", "bob": "10"})]
    result = compute_balances(expenses, ["alice", "bob"])

    assert result["erin"] == Decimal("20")
    assert sum(result.values()) == Decimal("0")


# ── Three-member scenario ──────────────────────────────────────────────────

MEMBERS = ["A", "B", "C"]


def test_scenario_equal_expense_by_a():
    first = _computed_expense("A", "30", SplitType.EQUAL, MEMBERS)
    result = compute_balances([first], MEMBERS)

    assert result == {"A": Decimal("20"), "B": Decimal("-10"), "C": Decimal("-10")}


def test_scenario_exact_expense_by_b_on_top():
    first = _computed_expense("A", "30", SplitType.EQUAL, MEMBERS)
    second = _computed_expense(
        "B", "60", SplitType.EXACT, MEMBERS, {"A": "20", "B": "20", "C": "20"},
    )
    result = compute_balances([first, second], MEMBERS)

    assert result == {"A": Decimal("0"), "B": Decimal("30"), "C": Decimal("-30")}


def test_scenario_deleting_second_expense_restores_first_state():
    first = _computed_expense("A", "30", SplitType.EQUAL, MEMBERS)
    second = _computed_expense(
        "B", "60", SplitType.EXACT, MEMBERS, {"A": "20", "B": "20", "C": "20"},
    )

    before = compute_balances([first], MEMBERS)
    compute_balances([first, second], MEMBERS)
    after = compute_balances([first], MEMBERS)

    assert after == before


# ── Purity ─────────────────────────────────────────────────────────────────

def test_recompute_is_idempotent_and_order_independent():
    expenses = [
        _computed_expense("A", "30", SplitType.EQUAL, MEMBERS),
        _computed_expense("B", "60", SplitType.EXACT, MEMBERS, {"A": "20", "B": "20", "C": "20"}),
        _computed_expense("C", "45", SplitType.PERCENTAGE, MEMBERS, {"A": "50", "B": "25", "C": "25"}),
    ]
    first = compute_balances(expenses, MEMBERS)
    second = compute_balances(expenses, MEMBERS)

    shuffled = list(expenses)
    random.Random(7).shuffle(shuffled)
    third = compute_balances(shuffled, MEMBERS)

    assert first == second == third


def test_inputs_are_not_mutated():
    expense = _expense("alice", "10", {"alice": "5", "bob": "5"})
    compute_balances([expense], ["alice", "bob"])

    assert expense.amount == Decimal("10")
    assert [s.amount for s in expense.splits] == [Decimal("5"), Decimal("5")]


@pytest.mark.parametrize("n", [2, 3, 6, 7])
def test_equal_splits_sum_to_zero_within_residue(n):
    members = [f"m{i}" for i in range(n)]
    expenses = [
        _computed_expense(members[0], "10", SplitType.EQUAL, members),
        _computed_expense(members[-1], "33.33", SplitType.EQUAL, members),
    ]
    result = compute_balances(expenses, members)

    assert abs(sum(result.values())) < Decimal("1e-20")


# ── Legacy and malformed records ───────────────────────────────────────────

def test_legacy_split_among_is_debited_equally():
    legacy = _expense("alice", "30", split_among=["alice", "bob", "carol"])
    result = compute_balances([legacy], ["alice", "bob", "carol"])

    assert result == {
        "alice": Decimal("20"),
        "bob": Decimal("-10"),
        "carol": Decimal("-10"),
    }


def test_splits_take_precedence_over_split_among():
    expense = _expense("alice", "30", {"bob": "30"}, split_among=["alice", "bob", "carol"])
    result = compute_balances([expense], ["alice", "bob", "carol"])

    assert result["bob"] == Decimal("-30")
    assert result["carol"] == Decimal("0")


def test_expense_without_splits_credits_payer_only():
    result = compute_balances([_expense("alice", "25")], ["alice", "bob"])

    assert result == {"alice": Decimal("25"), "bob": Decimal("0")}


def test_malformed_amounts_count_as_zero():
    expense = Expense(
        group_id="g1",
        description="broken",
        amount="not-a-number",
        paid_by="alice",
        splits=[Split(user_id="bob", amount=None)],
    )
    result = compute_balances([expense], ["alice", "bob"])

    assert result == {"alice": Decimal("0"), "bob": Decimal("0")}


def test_out_of_range_amounts_count_as_zero_instead_of_overflowing():
    # Records pulled from a sheet are not validated on the way in.
    huge = Expense(
        group_id="g1",
        description="pulled",
        amount=Decimal("1e9999999"),
        paid_by="alice",
        splits=[Split(user_id="bob", amount=Decimal("1e9999999"))],
    )
    legacy = Expense(
        group_id="g1",
        description="pulled legacy",
        amount="1e9999999",
        paid_by="bob",
        split_among=["alice", "bob"],
    )
    normal = _expense("alice", "10", {"bob": "10"})

    result = compute_balances([huge, huge, legacy, normal], ["alice", "bob"])

    assert result == {"alice": Decimal("10"), "bob": Decimal("-10")}

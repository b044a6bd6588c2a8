"""
Unit tests for services/expense_repository.py.

What this file proves:
  - create() assigns an id and created_at, and stores amounts as strings
  - update() replaces by id and never inserts
  - list_by_group() is newest first and skips unreadable records
  - legacy records (no splits, split_among only) load without errors
  - delete_all_by_group() only touches the given group
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backend.app.errors import ErrorCode, NotFoundError
from backend.app.models.expense import Expense, Split, SplitType
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.store.record_store import EXPENSES, InMemoryRecordStore


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def repo(store):
    return ExpenseRepository(store)


def _expense(group_id="g1", **kwargs) -> Expense:
    defaults = dict(
        group_id=group_id,
        description="Dinner",
        amount=Decimal("30"),
        paid_by="a",
        splits=[Split("a", Decimal("15")), Split("b", Decimal("15"))],
    )
    defaults.update(kwargs)
    return Expense(**defaults)


def test_create_assigns_id_and_created_at(repo, store):
    expense = repo.create(_expense())

    assert expense.id
    assert expense.created_at is not None

    record = store.get(EXPENSES, expense.id)
    assert record["amount"] == "30"
    assert record["splits"] == [
        {"user_id": "a", "amount": "15"},
        {"user_id": "b", "amount": "15"},
    ]
    assert record["split_type"] == "EQUAL"


def test_create_keeps_given_id(repo):
    expense = repo.create(_expense(id="remote-1"))
    assert repo.get("remote-1").id == expense.id == "remote-1"


def test_get_loads_decimal_amounts(repo):
    expense = repo.create(_expense(split_type=SplitType.EXACT))

    loaded = repo.get(expense.id)

    assert loaded.amount == Decimal("30")
    assert loaded.split_type == SplitType.EXACT
    assert all(isinstance(s.amount, Decimal) for s in loaded.splits)


def test_get_missing_raises_expense_not_found(repo):
    with pytest.raises(NotFoundError) as exc_info:
        repo.get("missing")

    assert exc_info.value.code == ErrorCode.EXPENSE_NOT_FOUND
    assert exc_info.value.http_status == 404


def test_find_missing_returns_none(repo):
    assert repo.find("missing") is None


def test_update_replaces_record(repo):
    expense = repo.create(_expense())
    expense.description = "Lunch"
    expense.amount = Decimal("40")

    repo.update(expense)

    loaded = repo.get(expense.id)
    assert loaded.description == "Lunch"
    assert loaded.amount == Decimal("40")


def test_update_never_inserts(repo, store):
    with pytest.raises(NotFoundError):
        repo.update(_expense(id="ghost"))
    assert store.get(EXPENSES, "ghost") is None


def test_delete_is_idempotent(repo):
    expense = repo.create(_expense())

    repo.delete(expense.id)
    repo.delete(expense.id)

    assert repo.find(expense.id) is None


def test_list_by_group_is_newest_first(repo):
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    repo.create(_expense(id="old", created_at=base))
    repo.create(_expense(id="new", created_at=base + timedelta(days=2)))
    repo.create(_expense(id="mid", created_at=base + timedelta(days=1)))
    repo.create(_expense(id="other", group_id="g2"))

    assert [e.id for e in repo.list_by_group("g1")] == ["new", "mid", "old"]


def test_list_by_group_skips_unreadable_records(repo, store):
    repo.create(_expense(id="good"))
    store.put(EXPENSES, {"id": "bad", "group_id": "g1", "amount": "5"})  # no paid_by

    assert [e.id for e in repo.list_by_group("g1")] == ["good"]


def test_legacy_record_loads_with_split_among(repo, store):
    store.put(EXPENSES, {
        "id": "legacy",
        "group_id": "g1",
        "description": "Old",
        "amount": "abc",
        "paid_by": "a",
        "split_among": ["a", "b"],
    })

    loaded = repo.get("legacy")

    assert loaded.amount == Decimal("0")
    assert loaded.splits == []
    assert loaded.split_among == ["a", "b"]
    assert loaded.split_type == SplitType.EQUAL


def test_delete_all_by_group_only_touches_that_group(repo):
    repo.create(_expense(id="e1"))
    repo.create(_expense(id="e2"))
    repo.create(_expense(id="e3", group_id="g2"))

    removed = repo.delete_all_by_group("g1")

    assert removed == 2
    assert repo.list_by_group("g1") == []
    assert [e.id for e in repo.list_by_group("g2")] == ["e3"]

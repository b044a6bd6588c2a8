"""
services/expense_repository.py — Expense CRUD over the record store.

Thin by intent: no validation of splits here (that is expense_service's job)
and no commits (the caller decides when a unit of work is done).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from marshmallow import ValidationError

from backend.app.errors import ErrorCode, NotFoundError
from backend.app.models.expense import Expense
from backend.app.schemas.expense_schema import expense_record_schema
from backend.app.store.record_store import EXPENSES, RecordStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _sort_key(expense: Expense) -> datetime:
    created = expense.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


class ExpenseRepository:

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _load(self, record: dict) -> Expense:
        return expense_record_schema.load(record)

    def create(self, expense: Expense) -> Expense:
        """Stores a new expense. Assigns `id` and `created_at` when absent."""
        if not expense.id:
            expense.id = new_id()
        if expense.created_at is None:
            expense.created_at = datetime.now(timezone.utc)
        self.store.put(EXPENSES, expense_record_schema.dump(expense))
        return expense

    def update(self, expense: Expense) -> Expense:
        """
        Full replacement by id.

        Raises NotFoundError if no expense with this id exists; an update is
        never turned into an insert.
        """
        if not expense.id or self.store.get(EXPENSES, expense.id) is None:
            raise NotFoundError("expense", expense.id, code=ErrorCode.EXPENSE_NOT_FOUND)
        self.store.put(EXPENSES, expense_record_schema.dump(expense))
        return expense

    def delete(self, expense_id: str) -> None:
        """Hard delete. Deleting an absent id is a no-op."""
        self.store.delete(EXPENSES, expense_id)

    def find(self, expense_id: str) -> Expense | None:
        record = self.store.get(EXPENSES, expense_id)
        return self._load(record) if record is not None else None

    def get(self, expense_id: str) -> Expense:
        expense = self.find(expense_id)
        if expense is None:
            raise NotFoundError("expense", expense_id, code=ErrorCode.EXPENSE_NOT_FOUND)
        return expense

    def list_by_group(self, group_id: str) -> list[Expense]:
        """
        All expenses of a group, newest first.

        A record too broken to load (no id or payer) is skipped with a
        warning so one bad row cannot hide the rest of the group.
        """
        expenses = []
        for record in self.store.list(EXPENSES, {"group_id": group_id}):
            try:
                expenses.append(self._load(record))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unreadable expense record %r in group %s: %s",
                    record.get("id"), group_id, exc.messages,
                )
        expenses.sort(key=_sort_key, reverse=True)
        return expenses

    def delete_all_by_group(self, group_id: str) -> int:
        """Deletes every expense of a group. Returns how many were removed."""
        removed = 0
        for record in self.store.list(EXPENSES, {"group_id": group_id}):
            if self.store.delete(EXPENSES, record["id"]):
                removed += 1
        return removed

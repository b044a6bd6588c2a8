"""
services/expense_service.py — Expense lifecycle.

Every write goes through the same states:

    Draft → Validating → Persisted
                      ↘ Rejected

Validating runs, in order:
  PAYER_NOT_MEMBER (422)       — paid_by must be an active group member
  SPLIT_USER_NOT_MEMBER (422)  — every split_inputs key must be a member
                                 (EXACT / PERCENTAGE only; EQUAL ignores inputs)
  split calculator             — InvalidAmountError, EmptyMemberSetError,
                                 SplitMismatchError (all 422)

Nothing is written until all of them pass. A write either stores the
complete record or nothing: a store failure rolls back and raises
PersistenceError.

Authorization rules:
  - Create, list, get: caller must be a group member (FORBIDDEN, 403)
  - Update, delete:    caller must be the payer OR the group creator

Unlike the group and auth services, the lifecycle commits its own unit of
work. The `on_commit(group_id)` hook runs only after the commit succeeded
(used to push SHEET groups to the remote mirror). A failing hook is logged
and never changes the result of the write.

Layer rules:
  - No Flask imports. Receives a RecordStore and plain dicts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from backend.app.errors import AppError, ErrorCode, PersistenceError
from backend.app.models.expense import Expense, Split, SplitType
from backend.app.models.group import Group
from backend.app.services import group_service
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.services.split_calculator import compute_splits
from backend.app.store.record_store import RecordStore

logger = logging.getLogger(__name__)

CommitHook = Callable[[str], None]


# ── Private helpers ────────────────────────────────────────────────────────

def _validate_payer_is_member(paid_by: str, group: Group) -> None:
    if paid_by not in group.members:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by} is not a member of group {group.id}.",
            422,
            field="paid_by",
        )


def _validate_split_users_are_members(
        split_inputs: Mapping[str, object],
        group: Group,
) -> None:
    """Raises SPLIT_USER_NOT_MEMBER (422) for the first input key not in the group."""
    member_set = set(group.members)
    for user_id in split_inputs:
        if user_id not in member_set:
            raise AppError(
                ErrorCode.SPLIT_USER_NOT_MEMBER,
                f"User {user_id} is not a member of group {group.id}.",
                422,
                field="split_inputs",
            )


def _validated_splits(data: dict, group: Group) -> list[Split]:
    """Runs every check of the Validating state and returns the splits to store."""
    split_type: SplitType = data.get("split_type", SplitType.EQUAL)
    split_inputs = data.get("split_inputs") or {}

    _validate_payer_is_member(data["paid_by"], group)
    if split_type != SplitType.EQUAL:
        _validate_split_users_are_members(split_inputs, group)

    return compute_splits(split_type, data["amount"], group.members, split_inputs)


def _require_payer_or_creator(expense: Expense, group: Group, caller_id: str, action: str) -> None:
    is_payer = (caller_id == expense.paid_by)
    is_creator = (caller_id == group.created_by)

    if not (is_payer or is_creator):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the original payer or group creator may {action} this expense.",
            403,
        )


def _commit(store: RecordStore, write: Callable[[], object]) -> None:
    """
    Runs `write` and commits. On any failure the store is rolled back and
    PersistenceError is raised, so partial writes never survive.
    """
    try:
        write()
        store.commit()
    except PersistenceError:
        store.rollback()
        raise
    except Exception as exc:
        store.rollback()
        logger.exception("Expense write failed")
        raise PersistenceError("The expense could not be saved.") from exc


def _run_hook(on_commit: CommitHook | None, group_id: str) -> None:
    if on_commit is None:
        return
    try:
        on_commit(group_id)
    except Exception:
        logger.exception("Post-commit hook failed for group %s", group_id)


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: str,
        caller_id: str,
        data: dict,
        store: RecordStore,
        on_commit: CommitHook | None = None,
) -> Expense:
    """
    Records a new expense for a group.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user (from flask.g).
        data:      Validated dict from ExpenseInputSchema.
        on_commit: Called with group_id after the expense is durable.

    Returns:
        The persisted Expense, with id and created_at assigned.
    """
    group = group_service.get_group_or_404(group_id, store)
    group_service.require_member(group, caller_id)

    splits = _validated_splits(data, group)

    expense = Expense(
        group_id=group_id,
        description=data["description"],
        amount=data["amount"],
        paid_by=data["paid_by"],
        split_type=data.get("split_type", SplitType.EQUAL),
        splits=splits,
    )
    repository = ExpenseRepository(store)
    _commit(store, lambda: repository.create(expense))

    logger.info(
        "Expense %s created in group %s (%s, %s split)",
        expense.id, group_id, expense.amount, expense.split_type.value,
    )
    _run_hook(on_commit, group_id)
    return expense


def list_expenses(group_id: str, caller_id: str, store: RecordStore) -> list[Expense]:
    """Expenses of a group, newest first. Caller must be a member."""
    group = group_service.get_group_or_404(group_id, store)
    group_service.require_member(group, caller_id)
    return ExpenseRepository(store).list_by_group(group_id)


def get_expense(expense_id: str, caller_id: str, store: RecordStore) -> Expense:
    """
    Returns a single expense.

    Raises EXPENSE_NOT_FOUND (404), or FORBIDDEN (403) when the caller is not
    a member of the expense's group.
    """
    expense = ExpenseRepository(store).get(expense_id)
    group = group_service.get_group_or_404(expense.group_id, store)
    group_service.require_member(group, caller_id)
    return expense


def update_expense(
        expense_id: str,
        caller_id: str,
        data: dict,
        store: RecordStore,
        on_commit: CommitHook | None = None,
) -> Expense:
    """
    Full replacement of description, amount, paid_by, split_type and splits.

    id, group_id and created_at never change. Splits are recomputed against
    the group's current members.
    """
    repository = ExpenseRepository(store)
    existing = repository.get(expense_id)

    group = group_service.get_group_or_404(existing.group_id, store)
    group_service.require_member(group, caller_id)
    _require_payer_or_creator(existing, group, caller_id, "edit")

    splits = _validated_splits(data, group)

    updated = Expense(
        id=existing.id,
        group_id=existing.group_id,
        created_at=existing.created_at,
        description=data["description"],
        amount=data["amount"],
        paid_by=data["paid_by"],
        split_type=data.get("split_type", SplitType.EQUAL),
        splits=splits,
    )
    _commit(store, lambda: repository.update(updated))

    logger.info("Expense %s updated in group %s", expense_id, existing.group_id)
    _run_hook(on_commit, existing.group_id)
    return updated


def delete_expense(
        expense_id: str,
        caller_id: str,
        store: RecordStore,
        on_commit: CommitHook | None = None,
) -> None:
    """
    Hard-deletes an expense. Balances drop its contribution on the next read.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist.
        AppError(FORBIDDEN, 403)         — caller is not payer or creator.
    """
    repository = ExpenseRepository(store)
    expense = repository.get(expense_id)

    group = group_service.get_group_or_404(expense.group_id, store)
    group_service.require_member(group, caller_id)
    _require_payer_or_creator(expense, group, caller_id, "delete")

    _commit(store, lambda: repository.delete(expense_id))

    logger.info("Expense %s deleted from group %s", expense_id, expense.group_id)
    _run_hook(on_commit, expense.group_id)

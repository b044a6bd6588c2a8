"""
services/sync_service.py — Spreadsheet mirror (Google Apps Script web app).

Protocol, against the group's connection_string:

    POST <url>  {"action": "SYNC_GROUP", "payload": {meta, members, expenses}}
                → {"status": "success"} | {"status": "error", "message": ...}
    GET  <url>?action=GET_ALL
                → {"status": "success", "data": {meta, members, expenses}}

The mirror is best-effort. The local store is the source of truth:
  - pushes run after the local commit, off the request thread, and every
    failure is logged and dropped
  - a pull replaces the group's local expenses wholesale with the remote
    rows (no field-level merge); only an explicit pull surfaces SyncError

Every HTTP call carries a bounded timeout (SHEET_SYNC_TIMEOUT_SECONDS,
10 s by default). Expiry is treated like any other sync failure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor

import requests
from marshmallow import ValidationError

from backend.app.errors import AppError, ErrorCode, SyncError
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.user import User
from backend.app.schemas.sync_schema import wire_expense_schema, wire_member_schema
from backend.app.services import group_service
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.store.record_store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10

MEMBER_ACTIVE    = "active"
MEMBER_PENDING   = "pending"
MEMBER_REQUESTED = "requested"


# ── Codec ──────────────────────────────────────────────────────────────────

def build_sync_payload(
        group: Group,
        users: Mapping[str, User],
        expenses: Iterable[Expense],
) -> dict:
    """
    Builds the SYNC_GROUP payload for one group.

    Members carry a status: active, pending (invited) or requested (asked
    to join). Ids without a user record are sent with the id as username.
    """
    def _member(user_id: str, status: str) -> dict:
        user = users.get(user_id)
        return wire_member_schema.dump({
            "id": user_id,
            "username": user.username if user is not None else user_id,
            "status": status,
        })

    members = (
        [_member(uid, MEMBER_ACTIVE) for uid in group.members]
        + [_member(uid, MEMBER_PENDING) for uid in group.pending_members]
        + [_member(uid, MEMBER_REQUESTED) for uid in group.join_requests]
    )

    return {
        "meta": {
            "id": group.id,
            "name": group.name,
            "createdBy": group.created_by,
        },
        "members": members,
        "expenses": [wire_expense_schema.dump(e) for e in expenses],
    }


def decode_remote_expenses(rows: Iterable[dict], group_id: str | None = None) -> list[Expense]:
    """
    Turns Expenses-sheet rows into Expense objects.

    A malformed `splits` cell decodes to []. Rows without an id or payer are
    skipped with a warning. When group_id is given every expense is assigned
    to it, whatever its groupId cell says.
    """
    expenses = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping non-object expense row from mirror: %r", row)
            continue
        try:
            expense = wire_expense_schema.load(row)
        except ValidationError as exc:
            logger.warning("Skipping unreadable mirror row %r: %s", row.get("id"), exc.messages)
            continue
        if group_id is not None:
            expense.group_id = group_id
        expenses.append(expense)
    return expenses


# ── Transport ──────────────────────────────────────────────────────────────

def push_group(url: str, payload: dict, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
    """POSTs a SYNC_GROUP request. Raises SyncError unless the script answers success."""
    try:
        response = requests.post(
            url,
            json={"action": "SYNC_GROUP", "payload": payload},
            timeout=timeout,
        )
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as exc:
        raise SyncError(f"Mirror push failed: {exc}") from exc
    except ValueError as exc:
        raise SyncError("Mirror push returned a non-JSON response.") from exc

    if not isinstance(body, dict) or body.get("status") != "success":
        message = body.get("message") if isinstance(body, dict) else None
        raise SyncError(f"Mirror rejected the push: {message or 'unknown error'}")


def fetch_group(url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> dict:
    """GETs ?action=GET_ALL and returns its `data` object."""
    try:
        response = requests.get(url, params={"action": "GET_ALL"}, timeout=timeout)
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as exc:
        raise SyncError(f"Mirror fetch failed: {exc}") from exc
    except ValueError as exc:
        raise SyncError("Mirror fetch returned a non-JSON response.") from exc

    if not isinstance(body, dict) or body.get("status") != "success":
        message = body.get("message") if isinstance(body, dict) else None
        raise SyncError(f"Mirror fetch failed: {message or 'unknown error'}")

    data = body.get("data")
    if not isinstance(data, dict):
        raise SyncError("Mirror response has no data object.")
    return data


# ── Group-level operations ─────────────────────────────────────────────────

def _require_mirrored(group: Group) -> None:
    if not group.is_mirrored:
        raise AppError(
            ErrorCode.SYNC_NOT_CONFIGURED,
            f"Group {group.id} is not configured for sheet storage.",
            422,
        )


def export_group(group_id: str, caller_id: str, store: RecordStore) -> dict:
    """The SYNC_GROUP payload for a group, as it would be pushed right now."""
    group = group_service.get_group_or_404(group_id, store)
    group_service.require_member(group, caller_id)
    return snapshot_payload(group, store)


def snapshot_payload(group: Group, store: RecordStore) -> dict:
    users = group_service.load_users(
        [*group.members, *group.pending_members, *group.join_requests],
        store,
    )
    expenses = ExpenseRepository(store).list_by_group(group.id)
    return build_sync_payload(group, users, expenses)


def pull_group(
        group_id: str,
        caller_id: str,
        store: RecordStore,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> int:
    """
    Replaces the group's local expenses with the mirror's.

    Nothing local changes unless the fetch succeeds. Returns the number of
    expenses now stored for the group. Commit is the route's job.

    Raises:
        AppError(SYNC_NOT_CONFIGURED, 422) — group is not a SHEET group.
        SyncError (502)                    — mirror unreachable or errored.
    """
    group = group_service.get_group_or_404(group_id, store)
    group_service.require_member(group, caller_id)
    _require_mirrored(group)

    data = fetch_group(group.connection_string, timeout=timeout)
    rows = data.get("expenses") or []
    remote = decode_remote_expenses(rows, group_id=group_id)

    repository = ExpenseRepository(store)
    removed = repository.delete_all_by_group(group_id)
    for expense in remote:
        repository.create(expense)

    logger.info(
        "Pulled group %s from mirror: %d local expenses replaced by %d remote",
        group_id, removed, len(remote),
    )
    return len(remote)


# ── Background pushes ──────────────────────────────────────────────────────

class SyncDispatcher:
    """
    Fire-and-forget executor for mirror pushes.

    submit() never raises and never blocks on the network. With inline=True
    (tests) the push runs on the calling thread, with the same error
    handling.
    """

    def __init__(self, max_workers: int = 2, inline: bool = False) -> None:
        self.inline = inline
        self._executor = None if inline else ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="sheet-sync",
        )

    def submit(self, url: str, payload: dict, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> Future | None:
        if self._executor is None:
            self._push_logged(url, payload, timeout)
            return None
        return self._executor.submit(self._push_logged, url, payload, timeout)

    @staticmethod
    def _push_logged(url: str, payload: dict, timeout: float) -> bool:
        group_id = payload.get("meta", {}).get("id")
        try:
            push_group(url, payload, timeout=timeout)
        except SyncError as exc:
            logger.warning("Mirror push for group %s failed: %s", group_id, exc.message)
            return False
        except Exception:
            logger.exception("Unexpected error pushing group %s to mirror", group_id)
            return False
        logger.debug("Mirror push for group %s succeeded", group_id)
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def make_commit_hook(
        store: RecordStore,
        dispatcher: SyncDispatcher,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Callable[[str], None]:
    """
    Post-commit hook for the expense lifecycle.

    The payload is read from the store on the calling thread, so the
    background push never touches the request's session. Groups that are not
    mirrored are skipped.
    """
    def on_commit(group_id: str) -> None:
        group = group_service.get_group_or_404(group_id, store)
        if not group.is_mirrored:
            return
        payload = snapshot_payload(group, store)
        dispatcher.submit(group.connection_string, payload, timeout=timeout)

    return on_commit

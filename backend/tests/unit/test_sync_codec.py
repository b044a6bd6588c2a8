"""
Unit tests for the spreadsheet mirror: wire codec, transport and dispatcher.

HTTP is never performed: requests.post / requests.get are patched on the
sync_service module and return MagicMock responses.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from backend.app.errors import AppError, ErrorCode, SyncError
from backend.app.models.expense import Expense, Split, SplitType
from backend.app.models.group import Group, StorageType
from backend.app.models.user import User
from backend.app.schemas.group_schema import group_record_schema
from backend.app.schemas.sync_schema import wire_expense_schema
from backend.app.services import sync_service
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.store.record_store import GROUPS, USERS, InMemoryRecordStore

URL = "https://script.google.com/macros/s/abc/exec"
CREATED = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
CREATED_MS = 1777636800000


def _response(body=None, status_error=None, json_error=None) -> MagicMock:
    response = MagicMock()
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


def _group(**overrides) -> Group:
    data = dict(
        id="g1",
        name="Trip",
        created_by="a",
        members=["a", "b"],
        pending_members=["c"],
        join_requests=["d"],
        storage_type=StorageType.SHEET,
        connection_string=URL,
        created_at=CREATED,
    )
    data.update(overrides)
    return Group(**data)


def _expense(**overrides) -> Expense:
    data = dict(
        id="e1",
        group_id="g1",
        description="Taxi",
        amount=Decimal("12.50"),
        paid_by="a",
        split_type=SplitType.EXACT,
        splits=[Split("a", Decimal("6.25")), Split("b", Decimal("6.25"))],
        created_at=CREATED,
    )
    data.update(overrides)
    return Expense(**data)


# ── Codec ──────────────────────────────────────────────────────────────────

def test_wire_expense_dump_shape():
    row = wire_expense_schema.dump(_expense())

    assert row == {
        "id": "e1",
        "groupId": "g1",
        "description": "Taxi",
        "amount": "12.50",
        "paidBy": "a",
        "splits": json.dumps([
            {"userId": "a", "amount": "6.25"},
            {"userId": "b", "amount": "6.25"},
        ]),
        "splitType": "EXACT",
        "createdAt": CREATED_MS,
    }


def test_wire_expense_load_reads_dumped_row():
    expense = wire_expense_schema.load(wire_expense_schema.dump(_expense()))

    assert expense == _expense()


def test_build_sync_payload_members_carry_status():
    users = {"a": User(id="a", username="alice", password_hash="x")}

    payload = sync_service.build_sync_payload(_group(), users, [_expense()])

    assert payload["meta"] == {"id": "g1", "name": "Trip", "createdBy": "a"}
    assert payload["members"] == [
        {"id": "a", "username": "alice", "status": "active"},
        {"id": "b", "username": "b", "status": "active"},
        {"id": "c", "username": "c", "status": "pending"},
        {"id": "d", "username": "d", "status": "requested"},
    ]
    assert [e["id"] for e in payload["expenses"]] == ["e1"]


@pytest.mark.parametrize("cell", ["not json", "{}", "", "   ", 42])
def test_malformed_splits_cell_decodes_to_empty(cell):
    row = {"id": "e1", "paidBy": "a", "amount": "5", "splits": cell}

    [expense] = sync_service.decode_remote_expenses([row])

    assert expense.splits == []


def test_splits_cell_items_without_user_are_dropped():
    cell = json.dumps([{"userId": "a", "amount": "x"}, {"amount": "3"}, "junk"])

    [expense] = sync_service.decode_remote_expenses([{"id": "e1", "paidBy": "a", "splits": cell}])

    assert expense.splits == [Split("a", Decimal("0"))]


def test_splits_cell_may_already_be_a_list():
    row = {"id": "e1", "paidBy": "a", "splits": [{"userId": "b", "amount": 4}]}

    [expense] = sync_service.decode_remote_expenses([row])

    assert expense.splits == [Split("b", Decimal("4"))]


def test_decode_is_lenient_on_cell_types():
    row = {
        "id": 17,
        "paidBy": "a",
        "description": 2026,
        "amount": 12.5,
        "splitType": "percentage",
        "createdAt": str(CREATED_MS),
    }

    [expense] = sync_service.decode_remote_expenses([row])

    assert expense.id == "17"
    assert expense.description == "2026"
    assert expense.amount == Decimal("12.5")
    assert expense.split_type == SplitType.PERCENTAGE
    assert expense.created_at == CREATED


@pytest.mark.parametrize(
    "cell, expected",
    [
        ("2026-05-01T12:00:00Z", CREATED),
        (CREATED_MS, CREATED),
        ("yesterday", None),
        (None, None),
        (True, None),
    ],
)
def test_created_at_cell_formats(cell, expected):
    [expense] = sync_service.decode_remote_expenses([{"id": "e1", "paidBy": "a", "createdAt": cell}])
    assert expense.created_at == expected


def test_unknown_split_type_loads_as_equal():
    [expense] = sync_service.decode_remote_expenses([{"id": "e1", "paidBy": "a", "splitType": "SHARES"}])
    assert expense.split_type == SplitType.EQUAL


def test_decode_skips_unusable_rows(caplog):
    rows = [
        "not a row",
        {"paidBy": "a"},
        {"id": "e2"},
        {"id": "ok", "paidBy": "a", "groupId": "elsewhere"},
    ]

    with caplog.at_level(logging.WARNING):
        expenses = sync_service.decode_remote_expenses(rows, group_id="g1")

    assert [e.id for e in expenses] == ["ok"]
    assert expenses[0].group_id == "g1"
    assert "Skipping" in caplog.text


# ── Transport ──────────────────────────────────────────────────────────────

@patch("backend.app.services.sync_service.requests.post")
def test_push_group_posts_sync_action(mock_post):
    mock_post.return_value = _response({"status": "success"})

    sync_service.push_group(URL, {"meta": {"id": "g1"}}, timeout=3)

    mock_post.assert_called_once_with(
        URL,
        json={"action": "SYNC_GROUP", "payload": {"meta": {"id": "g1"}}},
        timeout=3,
    )


@pytest.mark.parametrize(
    "response",
    [
        _response({"status": "error", "message": "Sheet locked"}),
        _response(["unexpected"]),
        _response(json_error=ValueError("no json")),
        _response(status_error=requests.HTTPError("500 Server Error")),
    ],
)
@patch("backend.app.services.sync_service.requests.post")
def test_push_group_failures_raise_sync_error(mock_post, response):
    mock_post.return_value = response

    with pytest.raises(SyncError) as exc_info:
        sync_service.push_group(URL, {})

    assert exc_info.value.code == ErrorCode.SYNC_FAILED
    assert exc_info.value.http_status == 502


@patch("backend.app.services.sync_service.requests.post")
def test_push_group_timeout_raises_sync_error(mock_post):
    mock_post.side_effect = requests.Timeout("timed out")

    with pytest.raises(SyncError):
        sync_service.push_group(URL, {}, timeout=0.1)


@patch("backend.app.services.sync_service.requests.get")
def test_fetch_group_returns_data(mock_get):
    data = {"meta": {"id": "g1"}, "members": [], "expenses": []}
    mock_get.return_value = _response({"status": "success", "data": data})

    assert sync_service.fetch_group(URL, timeout=4) == data
    mock_get.assert_called_once_with(URL, params={"action": "GET_ALL"}, timeout=4)


@pytest.mark.parametrize(
    "response",
    [
        _response({"status": "success"}),
        _response({"status": "error", "message": "nope"}),
        _response(json_error=ValueError("html login page")),
    ],
)
@patch("backend.app.services.sync_service.requests.get")
def test_fetch_group_failures_raise_sync_error(mock_get, response):
    mock_get.return_value = response
    with pytest.raises(SyncError):
        sync_service.fetch_group(URL)


@patch("backend.app.services.sync_service.requests.get")
def test_fetch_group_connection_error(mock_get):
    mock_get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(SyncError):
        sync_service.fetch_group(URL)


# ── Group operations ───────────────────────────────────────────────────────

@pytest.fixture
def store():
    store = InMemoryRecordStore()
    for uid, name in [("a", "alice"), ("b", "bob")]:
        store.put(USERS, {"id": uid, "username": name, "password_hash": "x"})
    store.put(GROUPS, group_record_schema.dump(_group(pending_members=[], join_requests=[])))
    ExpenseRepository(store).create(_expense(id="local-1"))
    store.commit()
    return store


@patch("backend.app.services.sync_service.requests.get")
def test_pull_group_replaces_local_expenses(mock_get, store):
    rows = [
        wire_expense_schema.dump(_expense(id="r1", group_id="other-group")),
        wire_expense_schema.dump(_expense(id="r2")),
        {"id": "broken"},
    ]
    mock_get.return_value = _response({"status": "success", "data": {"expenses": rows}})

    count = sync_service.pull_group("g1", "b", store, timeout=2)

    assert count == 2
    expenses = ExpenseRepository(store).list_by_group("g1")
    assert sorted(e.id for e in expenses) == ["r1", "r2"]
    assert all(e.group_id == "g1" for e in expenses)


@patch("backend.app.services.sync_service.requests.get")
def test_pull_group_failure_leaves_local_data(mock_get, store):
    mock_get.side_effect = requests.ConnectionError("offline")

    with pytest.raises(SyncError):
        sync_service.pull_group("g1", "a", store)

    assert [e.id for e in ExpenseRepository(store).list_by_group("g1")] == ["local-1"]


def test_pull_group_requires_sheet_storage(store):
    store.put(GROUPS, group_record_schema.dump(_group(storage_type=StorageType.LOCAL)))

    with pytest.raises(AppError) as exc_info:
        sync_service.pull_group("g1", "a", store)

    assert exc_info.value.code == ErrorCode.SYNC_NOT_CONFIGURED
    assert exc_info.value.http_status == 422


def test_pull_group_requires_membership(store):
    with pytest.raises(AppError) as exc_info:
        sync_service.pull_group("g1", "outsider", store)
    assert exc_info.value.code == ErrorCode.FORBIDDEN


def test_export_group_snapshot(store):
    payload = sync_service.export_group("g1", "a", store)

    assert payload["meta"]["id"] == "g1"
    assert [m["username"] for m in payload["members"]] == ["alice", "bob"]
    assert [e["id"] for e in payload["expenses"]] == ["local-1"]


# ── Dispatcher and commit hook ─────────────────────────────────────────────

@patch("backend.app.services.sync_service.push_group")
def test_inline_dispatcher_pushes_on_calling_thread(mock_push):
    dispatcher = sync_service.SyncDispatcher(inline=True)

    assert dispatcher.submit(URL, {"meta": {"id": "g1"}}, timeout=5) is None
    mock_push.assert_called_once_with(URL, {"meta": {"id": "g1"}}, timeout=5)


@patch("backend.app.services.sync_service.push_group")
def test_dispatcher_logs_and_swallows_push_failures(mock_push, caplog):
    mock_push.side_effect = SyncError("Mirror push failed: offline")
    dispatcher = sync_service.SyncDispatcher(inline=True)

    with caplog.at_level(logging.WARNING):
        dispatcher.submit(URL, {"meta": {"id": "g1"}})

    assert "Mirror push for group g1 failed" in caplog.text


@patch("backend.app.services.sync_service.push_group")
def test_dispatcher_swallows_unexpected_errors(mock_push):
    mock_push.side_effect = RuntimeError("bug")
    assert sync_service.SyncDispatcher._push_logged(URL, {}, 1) is False


@patch("backend.app.services.sync_service.push_group")
def test_threaded_dispatcher_returns_future(mock_push):
    dispatcher = sync_service.SyncDispatcher(max_workers=1)
    try:
        future = dispatcher.submit(URL, {"meta": {"id": "g1"}})
        assert future.result(timeout=5) is True
    finally:
        dispatcher.shutdown()
    mock_push.assert_called_once()


def test_commit_hook_submits_snapshot_for_sheet_groups(store):
    dispatcher = MagicMock()
    hook = sync_service.make_commit_hook(store, dispatcher, timeout=7)

    hook("g1")

    dispatcher.submit.assert_called_once()
    url, payload = dispatcher.submit.call_args.args
    assert url == URL
    assert payload["meta"]["id"] == "g1"
    assert dispatcher.submit.call_args.kwargs == {"timeout": 7}


def test_commit_hook_skips_local_groups(store):
    store.put(GROUPS, group_record_schema.dump(_group(storage_type=StorageType.LOCAL)))
    dispatcher = MagicMock()

    sync_service.make_commit_hook(store, dispatcher)("g1")

    dispatcher.submit.assert_not_called()

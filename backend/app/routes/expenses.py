"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped paths (/groups/:id/expenses) and the
expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - The expense lifecycle commits itself; these handlers do not commit.
  - Writes pass the mirror push hook so SHEET groups are pushed after the
    local commit.

Endpoints:
  POST   /groups/:id/expenses   → 201  create expense
  GET    /groups/:id/expenses   → 200  list expenses, newest first
  GET    /expenses/:id          → 200  get expense + splits
  PUT    /expenses/:id          → 200  full replacement
  DELETE /expenses/:id          → 200  hard delete
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import get_store, get_sync_dispatcher
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.expense_schema import ExpenseInputSchema, serialize_expense
from backend.app.services import expense_service, sync_service

expenses_bp = Blueprint("expenses", __name__)


def _commit_hook(store):
    return sync_service.make_commit_hook(
        store,
        get_sync_dispatcher(),
        timeout=current_app.config["SHEET_SYNC_TIMEOUT_SECONDS"],
    )


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<string:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: str):
    """POST /groups/:id/expenses — Record a new expense."""
    data = ExpenseInputSchema().load(request.get_json(force=True) or {})
    store = get_store()
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        store=store,
        on_commit=_commit_hook(store),
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/groups/<string:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: str):
    """GET /groups/:id/expenses — List a group's expenses, newest first."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        store=get_store(),
    )
    return jsonify({
        "data": [serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<string:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: str):
    """GET /expenses/:id — Get expense detail including splits."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<string:expense_id>", methods=["PUT"])
@require_auth
def update_expense(expense_id: str):
    """
    PUT /expenses/:id — Full replacement of the editable fields.
    Only the original payer or the group creator may edit.
    """
    data = ExpenseInputSchema().load(request.get_json(force=True) or {})
    store = get_store()
    expense = expense_service.update_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        store=store,
        on_commit=_commit_hook(store),
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<string:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: str):
    """DELETE /expenses/:id — Hard delete. Only the payer or the group creator."""
    store = get_store()
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        store=store,
        on_commit=_commit_hook(store),
    )
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200

"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. Balances are recomputed from the stored expenses on
    every request; nothing here is cached.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances  → 200  net balances + suggested transfers
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import get_store
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<string:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: str):
    """
    GET /groups/:id/balances

    Membership is enforced inside balance_service.get_balance_response().
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": result, "warnings": []}), 200

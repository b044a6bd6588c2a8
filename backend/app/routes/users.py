"""
routes/users.py — User lookup.

Endpoints (base url_prefix=/api/v1/users):
  GET /users/by-username/:username → 200  id + username, used to invite people
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from backend.app.extensions import get_store
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import auth_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/by-username/<string:username>", methods=["GET"])
@require_auth
def get_user_by_username(username: str):
    result = auth_service.lookup_user(username, get_store())
    return jsonify({"data": result, "warnings": []}), 200

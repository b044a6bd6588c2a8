"""
routes/groups.py — Group, membership and mirror route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No store queries.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                                 → 201  create group
  GET    /groups                                 → 200  list caller's groups
  GET    /groups/invites                         → 200  groups inviting the caller
  GET    /groups/:id                             → 200  get group + member lists
  DELETE /groups/:id                             → 200  delete group + expenses (creator)
  PUT    /groups/:id/storage                     → 200  LOCAL / SHEET settings (creator)
  POST   /groups/:id/invites                     → 201  invite a user (any member)
  POST   /groups/:id/invites/accept              → 200  caller accepts
  POST   /groups/:id/invites/decline             → 200  caller declines
  POST   /groups/:id/join-requests               → 201  caller asks to join
  POST   /groups/:id/join-requests/:uid/approve  → 200  creator approves
  POST   /groups/:id/join-requests/:uid/reject   → 200  creator rejects
  DELETE /groups/:id/members/:uid                → 200  remove member (creator or self)
  POST   /groups/:id/sync/pull                   → 200  replace expenses from mirror
  GET    /groups/:id/sync/export                 → 200  the payload a push would send
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import get_store
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.group_schema import (
    CreateGroupSchema,
    StorageSettingsSchema,
    UserRefSchema,
)
from backend.app.services import group_service, sync_service

groups_bp = Blueprint("groups", __name__)


# ── Groups ─────────────────────────────────────────────────────────────────

@groups_bp.route("", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a group. Caller becomes creator and first member."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    store = get_store()
    result = group_service.create_group(
        name=data["name"],
        creator_id=g.user_id,
        store=store,
        member_ids=data["member_ids"],
        storage_type=data["storage_type"],
        connection_string=data["connection_string"],
    )
    store.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — List all groups the authenticated user is a member of."""
    result = group_service.list_groups(
        user_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/invites", methods=["GET"])
@require_auth
def list_pending_invites():
    """GET /groups/invites — Groups that have invited the caller."""
    result = group_service.list_pending_invites(
        user_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<string:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: str):
    """GET /groups/:id — Group details with member lists. Caller must be a member."""
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<string:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: str):
    """DELETE /groups/:id — Delete a group and all of its expenses. Creator only."""
    store = get_store()
    removed = group_service.delete_group(
        group_id=group_id,
        caller_id=g.user_id,
        store=store,
    )
    store.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "group_id": group_id,
            "expenses_deleted": removed,
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<string:group_id>/storage", methods=["PUT"])
@require_auth
def update_storage(group_id: str):
    """PUT /groups/:id/storage — Switch between LOCAL and SHEET. Creator only."""
    data = StorageSettingsSchema().load(request.get_json(force=True) or {})
    store = get_store()
    result = group_service.update_storage(
        group_id=group_id,
        caller_id=g.user_id,
        storage_type=data["storage_type"],
        connection_string=data["connection_string"],
        store=store,
    )
    store.commit()
    return jsonify({"data": result, "warnings": []}), 200


# ── Invites ────────────────────────────────────────────────────────────────

@groups_bp.route("/<string:group_id>/invites", methods=["POST"])
@require_auth
def invite_member(group_id: str):
    """POST /groups/:id/invites — Invite a user by id or username."""
    data = UserRefSchema().load(request.get_json(force=True) or {})
    store = get_store()
    target_user_id = group_service.resolve_user_id(
        user_id=data["user_id"],
        username=data["username"],
        store=store,
    )
    result = group_service.invite_member(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_user_id,
        store=store,
    )
    store.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<string:group_id>/invites/accept", methods=["POST"])
@require_auth
def accept_invite(group_id: str):
    """POST /groups/:id/invites/accept — Caller joins the group they were invited to."""
    store = get_store()
    result = group_service.accept_invite(
        group_id=group_id,
        user_id=g.user_id,
        store=store,
    )
    store.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<string:group_id>/invites/decline", methods=["POST"])
@require_auth
def decline_invite(group_id: str):
    """POST /groups/:id/invites/decline — Caller turns the invite down."""
    store = get_store()
    group_service.decline_invite(
        group_id=group_id,
        user_id=g.user_id,
        store=store,
    )
    store.commit()
    return jsonify({
        "data": {"declined": True, "group_id": group_id},
        "warnings": [],
    }), 200


# ── Join requests ──────────────────────────────────────────────────────────

@groups_bp.route("/<string:group_id>/join-requests", methods=["POST"])
@require_auth
def request_join(group_id: str):
    """POST /groups/:id/join-requests — Caller asks the creator to let them in."""
    store = get_store()
    group_service.request_join(
        group_id=group_id,
        user_id=g.user_id,
        store=store,
    )
    store.commit()
    return jsonify({
        "data": {"requested": True, "group_id": group_id},
        "warnings": [],
    }), 201


@groups_bp.route("/<string:group_id>/join-requests/<string:target_uid>/approve", methods=["POST"])
@require_auth
def approve_join_request(group_id: str, target_uid: str):
    """POST /groups/:id/join-requests/:uid/approve — Creator only."""
    store = get_store()
    result = group_service.approve_join_request(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_uid,
        store=store,
    )
    store.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<string:group_id>/join-requests/<string:target_uid>/reject", methods=["POST"])
@require_auth
def reject_join_request(group_id: str, target_uid: str):
    """POST /groups/:id/join-requests/:uid/reject — Creator only."""
    store = get_store()
    group_service.reject_join_request(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_uid,
        store=store,
    )
    store.commit()
    return jsonify({
        "data": {"rejected": True, "group_id": group_id, "user_id": target_uid},
        "warnings": [],
    }), 200


# ── Members ────────────────────────────────────────────────────────────────

@groups_bp.route("/<string:group_id>/members/<string:target_uid>", methods=["DELETE"])
@require_auth
def remove_member(group_id: str, target_uid: str):
    """DELETE /groups/:id/members/:uid — Creator removes anyone; member removes self."""
    store = get_store()
    group_service.remove_member(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_uid,
        store=store,
    )
    store.commit()
    return jsonify({
        "data": {
            "removed": True,
            "group_id": group_id,
            "user_id": target_uid,
        },
        "warnings": [],
    }), 200


# ── Mirror ─────────────────────────────────────────────────────────────────

@groups_bp.route("/<string:group_id>/sync/pull", methods=["POST"])
@require_auth
def pull_from_mirror(group_id: str):
    """
    POST /groups/:id/sync/pull — Replace local expenses with the mirror's.

    Unlike background pushes, a failed pull is reported (502 SYNC_FAILED).
    """
    store = get_store()
    count = sync_service.pull_group(
        group_id=group_id,
        caller_id=g.user_id,
        store=store,
        timeout=current_app.config["SHEET_SYNC_TIMEOUT_SECONDS"],
    )
    store.commit()
    return jsonify({
        "data": {"group_id": group_id, "expense_count": count},
        "warnings": [],
    }), 200


@groups_bp.route("/<string:group_id>/sync/export", methods=["GET"])
@require_auth
def export_for_mirror(group_id: str):
    """GET /groups/:id/sync/export — The SYNC_GROUP payload for this group."""
    result = sync_service.export_group(
        group_id=group_id,
        caller_id=g.user_id,
        store=get_store(),
    )
    return jsonify({"data": result, "warnings": []}), 200

"""
services/group_service.py — Group and membership business logic.

Membership is plain list bookkeeping on the group record:

    invite_member        → pending_members   (accept / decline by the invitee)
    request_join         → join_requests     (approve / reject by the creator)
    accept / approve     → members
    remove_member        → out of members (creator removes anyone; a member
                           removes themselves)

Only `members` feeds the balance engine. Expenses already split with a member
who later leaves are kept as they are; that member keeps a balance entry.

Authorization rules:
  - Reading a group, inviting: caller must be a member
  - Approve/reject join requests, storage settings, deleting: creator only

Layer rules:
  - No Flask imports. Receives a RecordStore.
  - Commits are the route's responsibility — services only put/delete.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group, StorageType
from backend.app.schemas.auth_schema import user_record_schema
from backend.app.schemas.group_schema import group_record_schema
from backend.app.services import auth_service
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.store.record_store import GROUPS, USERS, RecordStore

logger = logging.getLogger(__name__)


# ── Helpers shared with other services ─────────────────────────────────────

def get_group_or_404(group_id: str, store: RecordStore) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    record = store.get(GROUPS, group_id)
    if record is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group_record_schema.load(record)


def require_member(group: Group, user_id: str) -> None:
    """Raises FORBIDDEN (403) if user_id is not an active member of the group."""
    if user_id not in group.members:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group.id}.",
            403,
        )


def require_creator(group: Group, user_id: str, action: str) -> None:
    if user_id != group.created_by:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the group creator may {action}.",
            403,
        )


def save_group(group: Group, store: RecordStore) -> Group:
    store.put(GROUPS, group_record_schema.dump(group))
    return group


def usernames_for(user_ids: Iterable[str], store: RecordStore) -> dict[str, str]:
    """{user_id: username} for every id that still has a user record."""
    names = {}
    for user_id in user_ids:
        record = store.get(USERS, user_id)
        if record is not None:
            names[user_id] = record.get("username", user_id)
    return names


def _require_user(user_id: str, store: RecordStore) -> None:
    if store.get(USERS, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )


def build_group_dict(group: Group, store: RecordStore) -> dict:
    """Serialises a Group with its member lists to a plain dict."""
    names = usernames_for(
        [*group.members, *group.pending_members, *group.join_requests],
        store,
    )

    def _people(ids: list[str]) -> list[dict]:
        return [{"id": uid, "username": names.get(uid, uid)} for uid in ids]

    return {
        "id": group.id,
        "name": group.name,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "storage_type": group.storage_type.value,
        "connection_string": group.connection_string,
        "members": _people(group.members),
        "pending_members": _people(group.pending_members),
        "join_requests": _people(group.join_requests),
    }


def _summary(group: Group) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "storage_type": group.storage_type.value,
        "member_count": len(group.members),
    }


def _list_groups(store: RecordStore) -> list[Group]:
    groups = [group_record_schema.load(r) for r in store.list(GROUPS)]
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    groups.sort(key=lambda g: g.created_at or epoch)
    return groups


# ── Groups ─────────────────────────────────────────────────────────────────

def create_group(
        name: str,
        creator_id: str,
        store: RecordStore,
        member_ids: Iterable[str] = (),
        storage_type: StorageType = StorageType.LOCAL,
        connection_string: str | None = None,
) -> dict:
    """
    Creates a group. The creator is the only active member; everyone else
    in member_ids is invited (pending) until they accept.
    """
    invitees = [uid for uid in dict.fromkeys(member_ids) if uid != creator_id]
    for uid in invitees:
        _require_user(uid, store)

    group = Group(
        id=uuid.uuid4().hex,
        name=name,
        created_by=creator_id,
        members=[creator_id],
        pending_members=invitees,
        storage_type=storage_type,
        connection_string=connection_string,
        created_at=datetime.now(timezone.utc),
    )
    save_group(group, store)
    logger.info("Group %s created by %s (%d invited)", group.id, creator_id, len(invitees))
    return build_group_dict(group, store)


def list_groups(user_id: str, store: RecordStore) -> list[dict]:
    """Groups the user is an active member of, oldest first."""
    return [_summary(g) for g in _list_groups(store) if user_id in g.members]


def get_group(group_id: str, caller_id: str, store: RecordStore) -> dict:
    group = get_group_or_404(group_id, store)
    require_member(group, caller_id)
    return build_group_dict(group, store)


def delete_group(group_id: str, caller_id: str, store: RecordStore) -> int:
    """
    Deletes a group and every expense attributed to it.

    Returns the number of expenses removed.
    """
    group = get_group_or_404(group_id, store)
    require_creator(group, caller_id, "delete the group")

    removed = ExpenseRepository(store).delete_all_by_group(group_id)
    store.delete(GROUPS, group_id)
    logger.info("Group %s deleted with %d expenses", group_id, removed)
    return removed


def update_storage(
        group_id: str,
        caller_id: str,
        storage_type: StorageType,
        connection_string: str | None,
        store: RecordStore,
) -> dict:
    """Switches a group between LOCAL and SHEET mirroring."""
    group = get_group_or_404(group_id, store)
    require_creator(group, caller_id, "change storage settings")

    group.storage_type = storage_type
    group.connection_string = connection_string if storage_type == StorageType.SHEET else None
    save_group(group, store)
    return build_group_dict(group, store)


# ── Invites ────────────────────────────────────────────────────────────────

def resolve_user_id(user_id: str | None, username: str | None, store: RecordStore) -> str:
    """Turns an invite target given by id or username into a user id."""
    if user_id:
        _require_user(user_id, store)
        return user_id

    user = auth_service.find_user_by_username(username or "", store)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User '{username}' not found.",
            404,
        )
    return user.id


def invite_member(
        group_id: str,
        caller_id: str,
        target_user_id: str,
        store: RecordStore,
) -> dict:
    """
    Invites a user. Any member may invite. Inviting someone already pending
    is a no-op.

    Raises:
      AppError(ALREADY_MEMBER, 409) — target is already an active member
    """
    group = get_group_or_404(group_id, store)
    require_member(group, caller_id)
    _require_user(target_user_id, store)

    if target_user_id in group.members:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user_id} is already a member of group {group_id}.",
            409,
        )

    if target_user_id not in group.pending_members:
        group.pending_members.append(target_user_id)
        save_group(group, store)
    return build_group_dict(group, store)


def list_pending_invites(user_id: str, store: RecordStore) -> list[dict]:
    return [_summary(g) for g in _list_groups(store) if user_id in g.pending_members]


def _take_pending(group: Group, user_id: str) -> None:
    if user_id not in group.pending_members:
        raise AppError(
            ErrorCode.INVITE_NOT_FOUND,
            f"User {user_id} has no pending invite to group {group.id}.",
            404,
        )
    group.pending_members = [uid for uid in group.pending_members if uid != user_id]


def accept_invite(group_id: str, user_id: str, store: RecordStore) -> dict:
    group = get_group_or_404(group_id, store)
    _take_pending(group, user_id)
    if user_id not in group.members:
        group.members.append(user_id)
    group.join_requests = [uid for uid in group.join_requests if uid != user_id]
    save_group(group, store)
    return build_group_dict(group, store)


def decline_invite(group_id: str, user_id: str, store: RecordStore) -> None:
    group = get_group_or_404(group_id, store)
    _take_pending(group, user_id)
    save_group(group, store)


# ── Join requests ──────────────────────────────────────────────────────────

def request_join(group_id: str, user_id: str, store: RecordStore) -> None:
    """
    Asks to join a group. Repeating a request is a no-op.

    Raises:
      AppError(ALREADY_MEMBER, 409) — the user is already an active member
    """
    group = get_group_or_404(group_id, store)
    if user_id in group.members:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {user_id} is already a member of group {group_id}.",
            409,
        )
    if user_id not in group.join_requests:
        group.join_requests.append(user_id)
        save_group(group, store)


def _take_join_request(group: Group, user_id: str) -> None:
    if user_id not in group.join_requests:
        raise AppError(
            ErrorCode.JOIN_REQUEST_NOT_FOUND,
            f"User {user_id} has not asked to join group {group.id}.",
            404,
        )
    group.join_requests = [uid for uid in group.join_requests if uid != user_id]


def approve_join_request(
        group_id: str,
        caller_id: str,
        target_user_id: str,
        store: RecordStore,
) -> dict:
    group = get_group_or_404(group_id, store)
    require_creator(group, caller_id, "approve join requests")
    _take_join_request(group, target_user_id)
    if target_user_id not in group.members:
        group.members.append(target_user_id)
    group.pending_members = [uid for uid in group.pending_members if uid != target_user_id]
    save_group(group, store)
    return build_group_dict(group, store)


def reject_join_request(
        group_id: str,
        caller_id: str,
        target_user_id: str,
        store: RecordStore,
) -> None:
    group = get_group_or_404(group_id, store)
    require_creator(group, caller_id, "reject join requests")
    _take_join_request(group, target_user_id)
    save_group(group, store)


# ── Leaving ────────────────────────────────────────────────────────────────

def remove_member(
        group_id: str,
        caller_id: str,
        target_user_id: str,
        store: RecordStore,
) -> None:
    """
    Removes a user from the active member list.

    Authorization:
      - The creator may remove any member (including themselves).
      - Any member may remove themselves.

    Existing expenses are left untouched; the removed user keeps their
    balance entry.

    Raises:
      AppError(FORBIDDEN, 403)        — caller not authorised to remove this user
      AppError(USER_NOT_FOUND, 404)   — target is not a member of the group
    """
    group = get_group_or_404(group_id, store)
    require_member(group, caller_id)

    is_creator = (caller_id == group.created_by)
    is_self = (caller_id == target_user_id)

    if not (is_creator or is_self):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only remove yourself from a group unless you are the creator.",
            403,
        )

    if target_user_id not in group.members:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )

    group.members = [uid for uid in group.members if uid != target_user_id]
    save_group(group, store)


def load_users(user_ids: Iterable[str], store: RecordStore) -> dict:
    """{user_id: User} for the ids that exist. Used to build the mirror payload."""
    users = {}
    for user_id in user_ids:
        record = store.get(USERS, user_id)
        if record is not None:
            users[user_id] = user_record_schema.load(record)
    return users

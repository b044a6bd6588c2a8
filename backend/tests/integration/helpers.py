"""
tests/integration/helpers.py — Shared helper functions for integration tests.

  - register(client, ...)          → dict with user + access_token
  - login(client, ...)             → dict with user + access_token
  - auth_headers(token)            → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)        → group dict
  - invite_and_accept(...)         → group dict after the invitee accepted
  - make_expense(...)              → HTTP response
  - setup_group(client, names)     → (users by name, group dict), all members

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations


def register(client, username: str = "alice", password: str = "Password1") -> dict:
    """
    Registers a new user and returns the response data dict.
    Returns: {"user": {...}, "access_token": "..."}
    """
    resp = client.post(
        "/api/v1/auth/register",
        json={"username": username, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, username: str, password: str = "Password1") -> dict:
    resp = client.post(
        "/api/v1/auth/login",
        json={"username": username, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(client, token: str, name: str = "Test Group", **extra) -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes the creator and first member.
    """
    resp = client.post(
        "/api/v1/groups",
        json={"name": name, **extra},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def invite_and_accept(client, inviter_token: str, group_id: str, invitee: dict) -> dict:
    """Invites `invitee` (a register() result) and accepts on their behalf."""
    resp = client.post(
        f"/api/v1/groups/{group_id}/invites",
        json={"user_id": invitee["user"]["id"]},
        headers=auth_headers(inviter_token),
    )
    assert resp.status_code == 201, f"invite failed: {resp.get_json()}"

    resp = client.post(
        f"/api/v1/groups/{group_id}/invites/accept",
        headers=auth_headers(invitee["access_token"]),
    )
    assert resp.status_code == 200, f"accept failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_expense(
    client,
    token: str,
    group_id: str,
    paid_by: str,
    amount,
    split_type: str = "EQUAL",
    split_inputs: dict | None = None,
    description: str = "Test Expense",
):
    """
    Creates an expense and returns the HTTP response.
    For EQUAL, leave split_inputs as None (the server splits across members).
    For EXACT / PERCENTAGE, pass {user_id: amount-or-percentage}.
    """
    payload: dict = {
        "description": description,
        "amount": amount,
        "paid_by": paid_by,
        "split_type": split_type,
    }
    if split_inputs is not None:
        payload["split_inputs"] = split_inputs

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def setup_group(client, names=("alice", "bob", "carol"), **group_extra):
    """
    Registers every name, lets the first one create a group and brings the
    rest in through invite + accept.

    Returns ({name: register() result}, group dict).
    """
    users = {name: register(client, name) for name in names}
    creator = users[names[0]]
    group = make_group(client, creator["access_token"], **group_extra)
    for name in names[1:]:
        group = invite_and_accept(client, creator["access_token"], group["id"], users[name])
    return users, group


def uid(user: dict) -> str:
    return user["user"]["id"]

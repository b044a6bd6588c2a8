"""
models/group.py — Group entity.

A group owns three disjoint id lists:
  members         — active members; the only list the balance engine reads
  pending_members — invited by a member, waiting for acceptance
  join_requests   — asked to join, waiting for the creator's approval

`storage_type` SHEET plus a `connection_string` (the Apps Script web app URL)
marks the group for mirroring after every expense write.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class StorageType(str, enum.Enum):
    LOCAL = "LOCAL"
    SHEET = "SHEET"


@dataclass
class Group:
    name: str
    created_by: str
    members: list[str] = field(default_factory=list)
    pending_members: list[str] = field(default_factory=list)
    join_requests: list[str] = field(default_factory=list)
    storage_type: StorageType = StorageType.LOCAL
    connection_string: str | None = None
    id: str | None = None
    created_at: datetime | None = None

    @property
    def is_mirrored(self) -> bool:
        return self.storage_type == StorageType.SHEET and bool(self.connection_string)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r}>"

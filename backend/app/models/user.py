"""
models/user.py — User entity.

The raw password is never stored; only the bcrypt hash.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    username: str
    password_hash: str
    id: str | None = None
    created_at: datetime | None = None

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} username={self.username!r}>"

"""
models/record.py — Generic record table backing the SQL record store.

Every collection (users, groups, expenses) lives in this one table, keyed by
(collection, id). The payload is the marshmallow-serialised record as JSON.
No business logic. No imports from services or routes.

Key design points:
  - Amounts inside the payload are strings — never JSON floats.
  - `group_id` is copied out of the payload for expense rows so group-scoped
    reads do not scan every expense.
  - `created_at` is copied out for the descending default ordering.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db


class Record(db.Model):
    __tablename__ = "records"

    __table_args__ = (
        Index("idx_records_collection_group", "collection", "group_id"),
    )

    collection: Mapped[str] = mapped_column(String(32), primary_key=True)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Only populated for records that belong to a group (expenses).
    group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Record {self.collection}/{self.id}>"

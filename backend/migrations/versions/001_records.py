"""Records table — the single table behind the SQL record store.

Revision: 001_records
Created:  2026-10-17

Every collection (users, groups, expenses) is stored as JSON documents in
one table keyed by (collection, id). Validation lives in the application
(schemas, split calculator), not in database constraints, so the same rules
apply to the in-memory store.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Columns:
  collection  users | groups | expenses
  id          opaque string id (uuid4 hex for locally created records)
  group_id    copied from the payload for group-scoped reads (expenses)
  payload     the marshmallow-dumped record; amounts are strings
  created_at  copied from the payload for newest-first ordering
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_records"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    op.create_table(
        "records",
        sa.Column("collection", sa.String(32), nullable=False),
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("group_id", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("collection", "id", name="pk_records"),
        sa.CheckConstraint(
            "collection IN ('users', 'groups', 'expenses')",
            name="ck_records_collection",
        ),
    )

    # Group-scoped expense listing: WHERE collection = 'expenses' AND group_id = ?
    op.create_index(
        "idx_records_collection_group",
        "records",
        ["collection", "group_id"],
    )


def downgrade() -> None:
    op.drop_index("idx_records_collection_group", table_name="records")
    op.drop_table("records")

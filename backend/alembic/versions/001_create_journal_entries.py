"""Create journal_entries table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  The server-side journal. Offline devices replay queued entries into
       this table; (user_id, idempotency_key) is unique so a replay maps
       back to the row it already created.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("location_name", sa.String(200), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("river_name", sa.String(200), nullable=True),
        sa.Column("water_conditions", sa.Text(), nullable=True),
        sa.Column("weather", sa.String(200), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("wind", sa.String(100), nullable=True),
        sa.Column("flies_used", sa.Text(), nullable=True),
        sa.Column("fish_caught", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("species", sa.String(200), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("photos", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("trip_date", sa.Date(), nullable=True),
        sa.Column(
            "idempotency_key",
            sa.String(128),
            nullable=True,
            comment="<device id>:<local queue id> sent by the offline client",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_journal_user_idempotency"),
    )
    op.create_index("idx_journal_user", "journal_entries", ["user_id"])
    op.create_index("idx_journal_date", "journal_entries", ["trip_date"])
    op.create_index("idx_journal_public", "journal_entries", ["is_public"])


def downgrade() -> None:
    op.drop_index("idx_journal_public", table_name="journal_entries")
    op.drop_index("idx_journal_date", table_name="journal_entries")
    op.drop_index("idx_journal_user", table_name="journal_entries")
    op.drop_table("journal_entries")

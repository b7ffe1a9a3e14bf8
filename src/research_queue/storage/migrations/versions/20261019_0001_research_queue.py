"""Create origin records and research queue tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "origin_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("raw_input", sa.Text(), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("origin_key", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "category",
            "origin_key",
            name="uq_origin_records_category_key",
        ),
    )
    op.create_index("ix_origin_records_category", "origin_records", ["category"])
    op.create_index("ix_origin_records_status", "origin_records", ["status"])

    op.create_table(
        "research_queue_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("origin_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("model", sa.String(), nullable=False, server_default="sonnet"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("2")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("output_file", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["origin_id"], ["origin_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("origin_id"),
    )
    op.create_index("ix_research_queue_items_status", "research_queue_items", ["status"])
    op.create_index(
        "idx_research_queue_items_pick_order",
        "research_queue_items",
        ["status", "priority", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_research_queue_items_pick_order", table_name="research_queue_items")
    op.drop_index("ix_research_queue_items_status", table_name="research_queue_items")
    op.drop_table("research_queue_items")
    op.drop_index("ix_origin_records_status", table_name="origin_records")
    op.drop_index("ix_origin_records_category", table_name="origin_records")
    op.drop_table("origin_records")

"""Create sync task queue and installation metadata tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sync_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("payload_type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_retries", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_sync_tasks_status_created",
        "sync_tasks",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_sync_tasks_status_updated",
        "sync_tasks",
        ["status", "updated_at"],
        unique=False,
    )
    op.create_index(
        "idx_sync_tasks_type_status",
        "sync_tasks",
        ["payload_type", "status"],
        unique=False,
    )
    op.create_table(
        "installation_metadata",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("installation_metadata")
    op.drop_index("idx_sync_tasks_type_status", table_name="sync_tasks")
    op.drop_index("idx_sync_tasks_status_updated", table_name="sync_tasks")
    op.drop_index("idx_sync_tasks_status_created", table_name="sync_tasks")
    op.drop_table("sync_tasks")

"""Create webhook_queue table.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhook_queue",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("event", sa.String(50), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_webhook_queue_status_next_attempt",
        "webhook_queue",
        ["status", "next_attempt_at"],
    )
    op.create_index("ix_webhook_queue_created_at", "webhook_queue", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_queue_created_at", table_name="webhook_queue")
    op.drop_index("ix_webhook_queue_status_next_attempt", table_name="webhook_queue")
    op.drop_table("webhook_queue")

"""Create webhook_deliveries table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhook_deliveries",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("event", sa.String(50), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("duration_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_webhook_deliveries_timestamp",
        "webhook_deliveries",
        [sa.text("timestamp DESC")],
    )
    op.create_index(
        "ix_webhook_deliveries_event_timestamp",
        "webhook_deliveries",
        ["event", sa.text("timestamp DESC")],
    )
    op.create_index(
        "ix_webhook_deliveries_url_timestamp",
        "webhook_deliveries",
        ["url", sa.text("timestamp DESC")],
    )
    op.create_index(
        "ix_webhook_deliveries_success_timestamp",
        "webhook_deliveries",
        ["success", sa.text("timestamp DESC")],
    )


def downgrade() -> None:
    op.drop_table("webhook_deliveries")

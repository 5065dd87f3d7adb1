"""Webhook endpoints

Revision ID: 004_webhook_endpoints
Revises: 003_outbox_events
Create Date: 2026-02-28 17:46:30.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "004_webhook_endpoints"
down_revision = "003_outbox_events"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhook_endpoints",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("secret", sa.String(length=128), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_webhook_endpoints_enabled", "webhook_endpoints", ["is_enabled"])
    op.create_index("ix_webhook_endpoints_created_at", "webhook_endpoints", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_endpoints_created_at", table_name="webhook_endpoints")
    op.drop_index("ix_webhook_endpoints_enabled", table_name="webhook_endpoints")
    op.drop_table("webhook_endpoints")

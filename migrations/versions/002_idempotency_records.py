"""Idempotency records keyed by (key, endpoint)

Revision ID: 002_idempotency_records
Revises: 001_payment_intents
Create Date: 2026-02-12 14:33:27.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "002_idempotency_records"
down_revision = "001_payment_intents"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "idempotency_records",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("endpoint", sa.String(length=128), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("response_body", sa.Text(), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("resource_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("key", "endpoint", name="pk_idempotency_records"),
    )


def downgrade() -> None:
    op.drop_table("idempotency_records")

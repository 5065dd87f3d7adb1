"""Payment intents

Revision ID: 001_payment_intents
Revises:
Create Date: 2026-02-09 12:37:33.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_payment_intents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column(
            "status",
            sa.Enum("requires_confirmation", "succeeded", name="payment_intent_status", native_enum=False),
            nullable=False,
            server_default="requires_confirmation",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payment_intent_amount_positive"),
    )


def downgrade() -> None:
    op.drop_table("payment_intents")

"""add monthly balance ledger

Revision ID: 202409081200
Revises: 202409080900
Create Date: 2024-09-08 12:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202409081200"
down_revision = "202409080900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "starting_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "remaining_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_balance_user_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_balance_month_range"),
    )


def downgrade() -> None:
    op.drop_table("balances")

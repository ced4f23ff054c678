"""Create admins and blocked_ips tables.

Revision ID: 0001
Revises:
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "admins",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_admins_email", "admins", ["email"], unique=True)

    op.create_table(
        "blocked_ips",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_blocked_ips_ip", "blocked_ips", ["ip"], unique=True)
    op.create_index("ix_blocked_ips_active", "blocked_ips", ["active"])


def downgrade() -> None:
    op.drop_index("ix_blocked_ips_active", table_name="blocked_ips")
    op.drop_index("ix_blocked_ips_ip", table_name="blocked_ips")
    op.drop_table("blocked_ips")
    op.drop_index("ix_admins_email", table_name="admins")
    op.drop_table("admins")

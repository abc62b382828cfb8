# ruff: noqa: I001
"""Statements, categories, merchant mappings and expenses.

Revision ID: 0001_spendro_core
Revises: None
Create Date: 2025-07-14
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_spendro_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "statements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("checksum", sa.CHAR(64), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("blob_url", sa.Text(), nullable=False),
        sa.Column(
            "status", sa.String(16), nullable=False, server_default=sa.text("'processing'")
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status in ('processing','completed','failed')", name="ck_statements_status"
        ),
    )
    op.create_index("ix_statements_user_id", "statements", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
    )
    # Case-insensitive uniqueness per owner; the resolver relies on this
    # index to detect concurrent first-use races.
    op.create_index(
        "uq_categories_user_lower_name",
        "categories",
        ["user_id", sa.text("lower(name)")],
        unique=True,
    )

    op.create_table(
        "merchant_mappings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("merchant_name", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "user_id", "merchant_name", name="uq_merchant_mappings_user_merchant"
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "statement_id",
            sa.String(36),
            sa.ForeignKey("statements.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("original_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("original_currency", sa.CHAR(3), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False),
        sa.Column("line_hash", sa.CHAR(64), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("user_id", "line_hash", name="uq_expenses_user_line_hash"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "original_amount > 0", name="ck_expenses_original_amount_positive"
        ),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("merchant_mappings")
    op.drop_index("uq_categories_user_lower_name", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_statements_user_id", table_name="statements")
    op.drop_table("statements")

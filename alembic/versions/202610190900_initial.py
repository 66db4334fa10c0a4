"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _owned_columns():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "category",
        *_owned_columns(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
    )

    op.create_table(
        "source",
        *_owned_columns(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
    )

    op.create_table(
        "event",
        *_owned_columns(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("budget", sa.Float()),
    )

    op.create_table(
        "transactions",
        *_owned_columns(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "category", sa.String(length=36), sa.ForeignKey("category.id"), nullable=False
        ),
        sa.Column(
            "source", sa.String(length=36), sa.ForeignKey("source.id"), nullable=False
        ),
        sa.Column(
            "event",
            sa.String(length=36),
            sa.ForeignKey("event.id", ondelete="SET NULL"),
        ),
    )
    op.create_index(
        "ix_transactions_user_created",
        "transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "budget",
        *_owned_columns(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("start", sa.DateTime(), nullable=False),
        sa.Column("end", sa.DateTime(), nullable=False),
        sa.CheckConstraint('"start" <= "end"', name="ck_budget_start_before_end"),
    )


def downgrade():
    op.drop_table("budget")
    op.drop_index("ix_transactions_user_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("event")
    op.drop_table("source")
    op.drop_table("category")

"""users, bills, daily entries, entry items and notifications

Revision ID: 202410180900
Revises:
Create Date: 2024-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "work_bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("bill_month", sa.Date(), nullable=False),
        sa.Column(
            "total_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "bill_month", name="uq_bill_user_month"),
        sa.CheckConstraint(
            "total_balance_cents >= 0", name="ck_bill_total_balance_positive"
        ),
    )

    op.create_table(
        "daily_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bill_id", sa.Integer(), sa.ForeignKey("work_bills.id"), nullable=False
        ),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column(
            "total_debit_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.UniqueConstraint("bill_id", "entry_date", name="uq_daily_entry_bill_date"),
    )
    op.create_index("ix_daily_entries_date", "daily_entries", ["entry_date"])

    op.create_table(
        "entry_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "daily_entry_id",
            sa.Integer(),
            sa.ForeignKey("daily_entries.id"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("proof_url", sa.String(length=500)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_entry_items_amount_positive"),
    )
    op.create_index("ix_entry_items_daily_entry", "entry_items", ["daily_entry_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON()),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_read",
        "notifications",
        ["user_id", "is_read", "created_at"],
    )


def downgrade():
    op.drop_index("ix_notifications_user_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_entry_items_daily_entry", table_name="entry_items")
    op.drop_table("entry_items")
    op.drop_index("ix_daily_entries_date", table_name="daily_entries")
    op.drop_table("daily_entries")
    op.drop_table("work_bills")
    op.drop_table("users")

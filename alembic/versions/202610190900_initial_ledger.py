"""initial ledger schema

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

FREQUENCIES = (
    "one_time",
    "weekly",
    "biweekly",
    "monthly",
    "bimonthly",
    "semi_monthly",
    "custom_days",
    "yearly",
)
CATEGORIES = (
    "housing",
    "utilities",
    "transportation",
    "insurance",
    "food",
    "entertainment",
    "healthcare",
    "debt",
    "savings",
    "income",
    "other",
)


def upgrade():
    op.create_table(
        "bill_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*CATEGORIES, name="category"),
            nullable=False,
            server_default="other",
        ),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("due_day", sa.Integer()),
        sa.Column("start_date", sa.Date()),
        sa.Column("semi_day1", sa.Integer()),
        sa.Column("semi_day2", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        sa.CheckConstraint(
            "due_day IS NULL OR (due_day BETWEEN 1 AND 31)",
            name="ck_template_due_day_range",
        ),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("bill_templates.id", ondelete="SET NULL"),
        ),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("actual_payment_date", sa.DateTime()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "category",
            sa.Enum(*CATEGORIES, name="category"),
            nullable=False,
            server_default="other",
        ),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_entry_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_entry_month_range"),
    )
    op.create_index("ix_entries_year_month", "entries", ["year", "month"])
    op.create_index(
        "ix_entries_template_year_month",
        "entries",
        ["template_id", "year", "month"],
    )
    op.create_index("ix_entries_unpaid_due", "entries", ["is_paid", "due_date"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )

    op.create_table(
        "month_balances",
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("ending_balance_cents", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("month", "year", name="pk_month_balances"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_balance_month_range"),
    )


def downgrade():
    op.drop_table("month_balances")
    op.drop_table("settings")
    op.drop_index("ix_entries_unpaid_due", table_name="entries")
    op.drop_index("ix_entries_template_year_month", table_name="entries")
    op.drop_index("ix_entries_year_month", table_name="entries")
    op.drop_table("entries")
    op.drop_table("bill_templates")

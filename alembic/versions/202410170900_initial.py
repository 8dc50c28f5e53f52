"""ledger entries, subscriptions and subscription payments

Revision ID: 202410170900
Revises:
Create Date: 2024-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410170900"
down_revision = None
branch_labels = None
depends_on = None


ENTRY_TYPE = sa.Enum("income", "expense", name="entrytype")
PAYMENT_STATUS = sa.Enum("paid", "pending", "partial", name="paymentstatus")
CYCLE_STATUS = sa.Enum("paid", "pending", "skipped", name="cyclestatus")
PAYMENT_METHOD = sa.Enum(
    "pix", "cash", "card", "transfer", "open", name="paymentmethod"
)


def upgrade():
    op.create_table(
        "financial_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("type", ENTRY_TYPE, nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("customer_name", sa.String(length=120)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_cents", sa.Integer()),
        sa.Column("original_amount_cents", sa.Integer()),
        sa.Column("due_date", sa.Date()),
        sa.Column(
            "payment_status", PAYMENT_STATUS, nullable=False, server_default="pending"
        ),
        sa.Column(
            "payment_method", PAYMENT_METHOD, nullable=False, server_default="open"
        ),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        sa.Column("origin_payment_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
        sa.CheckConstraint(
            "remaining_cents IS NULL OR remaining_cents >= 0",
            name="ck_entries_remaining_positive",
        ),
    )
    op.create_index(
        "ix_entries_user_type_due",
        "financial_entries",
        ["user_id", "type", "due_date"],
    )
    op.create_index(
        "ix_entries_origin_payment", "financial_entries", ["origin_payment_id"]
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("customer_name", sa.String(length=120)),
        sa.Column("type", ENTRY_TYPE, nullable=False, server_default="income"),
        sa.Column("monthly_amount_cents", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("billing_day", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "monthly_amount_cents >= 0", name="ck_subscription_amount_positive"
        ),
        sa.CheckConstraint(
            "billing_day IS NULL OR (billing_day >= 1 AND billing_day <= 31)",
            name="ck_subscription_billing_day_range",
        ),
    )

    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", CYCLE_STATUS, nullable=False, server_default="pending"),
        sa.Column("is_skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skip_reason", sa.String(length=200)),
        sa.Column("payment_method", PAYMENT_METHOD),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column(
            "financial_entry_id", sa.Integer(), sa.ForeignKey("financial_entries.id")
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "subscription_id", "year", "month", name="uq_payment_subscription_cycle"
        ),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_payment_month_range"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_payment_amount_positive"),
    )


def downgrade():
    op.drop_table("subscription_payments")
    op.drop_table("subscriptions")
    op.drop_index("ix_entries_origin_payment", table_name="financial_entries")
    op.drop_index("ix_entries_user_type_due", table_name="financial_entries")
    op.drop_table("financial_entries")

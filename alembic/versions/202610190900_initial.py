"""initial invoice schema

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


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("push_token", sa.String(length=255)),
        sa.Column(
            "monthly_budget_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "monthly_budget_cents >= 0", name="ck_user_budget_positive"
        ),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("vendor", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date()),
        sa.Column(
            "category", sa.String(length=100), nullable=False, server_default="Other"
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("recurrence_interval", sa.String(length=20)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_invoice_amount_positive"),
        sa.CheckConstraint(
            "(is_recurring AND recurrence_interval IS NOT NULL "
            "AND due_date IS NOT NULL) "
            "OR (NOT is_recurring AND recurrence_interval IS NULL)",
            name="ck_invoice_recurrence_consistent",
        ),
    )
    op.create_index(
        "ix_invoices_owner_created", "invoices", ["owner_id", "created_at"]
    )
    op.create_index(
        "ix_invoices_recurring_due", "invoices", ["is_recurring", "due_date"]
    )


def downgrade():
    op.drop_index("ix_invoices_recurring_due", table_name="invoices")
    op.drop_index("ix_invoices_owner_created", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("users")

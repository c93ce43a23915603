"""initial budget ledger schema

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


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
TRANSACTION_STATUS = sa.Enum(
    "pending", "completed", "cancelled", "processing", name="transactionstatus"
)
REIMBURSEMENT_STATUS = sa.Enum(
    "pending", "approved", "rejected", name="reimbursementstatus"
)


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "total_available_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_spent_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("fiscal_year", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total_spent_cents >= 0", name="ck_budget_spent_positive"),
    )

    op.create_table(
        "budget_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("allocated_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text()),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "budget_id", "category_id", name="uq_budget_line_category"
        ),
        sa.CheckConstraint("allocated_cents >= 0", name="ck_budget_line_allocated"),
        sa.CheckConstraint("spent_cents >= 0", name="ck_budget_line_spent"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "status", TRANSACTION_STATUS, nullable=False, server_default="pending"
        ),
        sa.Column("invoice_id", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index(
        "ix_transactions_status_date", "transactions", ["status", "date"]
    )
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "date"]
    )

    op.create_table(
        "reimbursement_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "status", REIMBURSEMENT_STATUS, nullable=False, server_default="pending"
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_reimbursement_amount_positive"
        ),
    )
    op.create_index(
        "ix_reimbursement_requests_status",
        "reimbursement_requests",
        ["status", "created_at"],
    )

    op.create_table(
        "reimbursement_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "reimbursement_id",
            sa.Integer(),
            sa.ForeignKey("reimbursement_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "budget_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(length=200), nullable=False),
        sa.Column("details", sa.Text(), nullable=False, server_default=""),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_budget_history_created", "budget_history", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_budget_history_created", table_name="budget_history")
    op.drop_table("budget_history")
    op.drop_table("reimbursement_attachments")
    op.drop_index(
        "ix_reimbursement_requests_status", table_name="reimbursement_requests"
    )
    op.drop_table("reimbursement_requests")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_status_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("budget_lines")
    op.drop_table("budgets")
    op.drop_table("categories")

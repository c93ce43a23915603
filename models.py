from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"
    processing = "processing"


class ReimbursementStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)

    budget_lines: Mapped[list["BudgetLine"]] = relationship(
        "BudgetLine", back_populates="category"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    total_available_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fiscal_year: Mapped[Optional[int]] = mapped_column(Integer)

    lines: Mapped[list["BudgetLine"]] = relationship(
        "BudgetLine",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetLine.id",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("total_spent_cents >= 0", name="ck_budget_spent_positive"),
    )

    def line_for(self, category_id: int) -> Optional["BudgetLine"]:
        for line in self.lines:
            if line.category_id == category_id:
                return line
        return None


class BudgetLine(Base):
    __tablename__ = "budget_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    allocated_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(Text)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="lines")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="budget_lines"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "category_id", name="uq_budget_line_category"),
        CheckConstraint("allocated_cents >= 0", name="ck_budget_line_allocated"),
        CheckConstraint("spent_cents >= 0", name="ck_budget_line_spent"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.pending
    )
    invoice_id: Mapped[Optional[str]] = mapped_column(String(64))

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_status_date", "status", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def signed_amount_cents(self) -> int:
        if self.type == TransactionType.income:
            return self.amount_cents
        return -self.amount_cents


class ReimbursementRequest(Base, TimestampMixin):
    __tablename__ = "reimbursement_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    status: Mapped[ReimbursementStatus] = mapped_column(
        SAEnum(ReimbursementStatus),
        nullable=False,
        default=ReimbursementStatus.pending,
    )
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    category: Mapped[Optional["Category"]] = relationship("Category")
    transaction: Mapped[Optional["Transaction"]] = relationship("Transaction")
    attachments: Mapped[list["ReimbursementAttachment"]] = relationship(
        "ReimbursementAttachment",
        back_populates="reimbursement",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_reimbursement_requests_status", "status", "created_at"),
        CheckConstraint("amount_cents > 0", name="ck_reimbursement_amount_positive"),
    )


class ReimbursementAttachment(Base):
    __tablename__ = "reimbursement_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reimbursement_id: Mapped[int] = mapped_column(
        ForeignKey("reimbursement_requests.id", ondelete="CASCADE"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    reimbursement: Mapped["ReimbursementRequest"] = relationship(
        "ReimbursementRequest", back_populates="attachments"
    )


class BudgetHistoryEntry(Base):
    __tablename__ = "budget_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_budget_history_created", "created_at"),)

import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import ReimbursementStatus, TransactionStatus, TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class BudgetLineIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allocated_cents: int = Field(..., ge=0)
    spent_cents: int = Field(..., ge=0)
    description: Optional[str] = Field(default=None, max_length=500)


class BudgetIn(BaseModel):
    """Whole-record replacement of the current budget.

    ``version`` is the version the caller read; 0 when no budget was stored.
    Spent figures are required: a save that only edits allocations sends
    back the spent amounts it read.
    """

    model_config = ConfigDict(extra="forbid")

    version: int = Field(..., ge=0)
    total_available_cents: int = Field(..., ge=0)
    total_spent_cents: int = Field(..., ge=0)
    fiscal_year: Optional[int] = Field(default=None, ge=1970, le=3000)
    categories: dict[str, BudgetLineIn] = Field(default_factory=dict)


class TransactionIn(BaseModel):
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    description: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    date: dt.date = Field(default_factory=date.today)
    status: TransactionStatus = TransactionStatus.pending
    invoice_id: Optional[str] = Field(default=None, max_length=64)

    @classmethod
    def from_signed(cls, amount_cents: int, **fields: object) -> "TransactionIn":
        """Build from a signed amount: positive is income, negative is expense."""
        if amount_cents > 0:
            return cls(type=TransactionType.income, amount_cents=amount_cents, **fields)
        return cls(type=TransactionType.expense, amount_cents=-amount_cents, **fields)


class TransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    date: Optional[dt.date] = None
    status: Optional[TransactionStatus] = None
    invoice_id: Optional[str] = Field(default=None, max_length=64)


class ReimbursementIn(BaseModel):
    invoice_id: str = Field(..., min_length=1, max_length=64)
    amount_cents: int = Field(..., gt=0)
    description: str = Field(default="", max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)


class TransactionQuery(BaseModel):
    status: Optional[TransactionStatus] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[dt.date] = None
    end: Optional[dt.date] = None
    limit: int = Field(default=200, gt=0, le=1000)


class ReimbursementQuery(BaseModel):
    status: Optional[ReimbursementStatus] = None
    user_id: Optional[int] = None

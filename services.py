from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Optional
from uuid import uuid4

from rapidfuzz.distance import Levenshtein
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from config import get_settings
from errors import (
    ConflictError,
    DependencyError,
    DuplicateCategoryError,
    InvalidStateError,
    NotFoundError,
    StaleWriteError,
    ValidationError,
)
from models import (
    Budget,
    BudgetHistoryEntry,
    BudgetLine,
    Category,
    ReimbursementAttachment,
    ReimbursementRequest,
    ReimbursementStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    utcnow,
)
from schemas import (
    BudgetIn,
    CategoryIn,
    ReimbursementIn,
    ReimbursementQuery,
    TransactionIn,
    TransactionPatch,
    TransactionQuery,
)
from storage import BlobStore, get_blob_store


logger = logging.getLogger(__name__)

# Serializes read-modify-write cycles on the budget aggregate within a process.
# Cross-process writers are caught by the version column on Budget.
_budget_lock = threading.RLock()


def get_current_user_id() -> int:
    return 1


def format_cents(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def _commit(session: Session) -> None:
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise StaleWriteError(
            "Budget was modified concurrently; reload and retry"
        ) from exc
    except OperationalError as exc:
        session.rollback()
        raise DependencyError("Record store unavailable") from exc
    except Exception:
        session.rollback()
        raise


def _record_history(sink, action: str, details: str, actor_id: int) -> None:
    try:
        sink.append(action, details, actor_id)
    except Exception:
        logger.exception(f"budget_history_failed: action={action!r}")


def _clamped(value: int, field: str) -> int:
    if value < 0:
        logger.warning(f"budget_clamped: field={field} value={value}")
        return 0
    return value


def _touch(budget: Budget) -> None:
    # Dirties the row so every ledger write bumps the version column.
    budget.updated_at = utcnow()


def _drop_line(budget: Budget, line: BudgetLine) -> None:
    budget.total_available_cents = _clamped(
        budget.total_available_cents - line.allocated_cents, "total_available_cents"
    )
    budget.total_spent_cents = _clamped(
        budget.total_spent_cents - line.spent_cents, "total_spent_cents"
    )
    budget.lines.remove(line)
    _touch(budget)


def _percent(part: int, whole: int) -> Optional[float]:
    if whole <= 0:
        return None
    return round(part * 100 / whole, 1)


@dataclass(frozen=True)
class Contribution:
    """The effect a single transaction has on the budget."""

    type: TransactionType
    amount_cents: int
    category_id: Optional[int]

    @classmethod
    def of(cls, txn: Transaction) -> Optional[Contribution]:
        if txn.status != TransactionStatus.completed or not txn.amount_cents:
            return None
        return cls(txn.type, txn.amount_cents, txn.category_id)


@dataclass
class BudgetLineView:
    allocated_cents: int
    spent_cents: int
    description: Optional[str]
    last_updated: Optional[datetime]


@dataclass
class BudgetView:
    id: Optional[int]
    version: int
    total_available_cents: int
    total_spent_cents: int
    fiscal_year: Optional[int]
    categories: dict[str, BudgetLineView]


class BudgetHistoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def append(
        self, action: str, details: str = "", actor_id: Optional[int] = None
    ) -> BudgetHistoryEntry:
        entry = BudgetHistoryEntry(
            action=action, details=details, user_id=actor_id or self.user_id
        )
        self.session.add(entry)
        _commit(self.session)
        return entry

    def list(self, limit: Optional[int] = None) -> list[BudgetHistoryEntry]:
        stmt = select(BudgetHistoryEntry).order_by(
            BudgetHistoryEntry.created_at.desc(), BudgetHistoryEntry.id.desc()
        )
        if limit:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()


class CategoryService:
    def __init__(
        self, session: Session, user_id: Optional[int] = None, history=None
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.history = history or BudgetHistoryService(session, self.user_id)

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _by_name(self, name: str, exclude_id: Optional[int] = None) -> Optional[Category]:
        stmt = select(Category).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt)

    def resolve(self, name: str) -> Optional[Category]:
        clean = (name or "").strip()
        if not clean:
            return None
        return self._by_name(clean)

    def suggestions(self, name: str) -> list[str]:
        """Names of registered categories within one edit of ``name``."""
        input_lower = (name or "").strip().lower()
        if not input_lower:
            return []
        return [
            category.name
            for category in self.list_all()
            if Levenshtein.distance(input_lower, category.name.lower()) <= 1
        ]

    def require(self, name: str) -> Category:
        category = self.resolve(name)
        if category is not None:
            return category
        close = self.suggestions(name)
        hint = f"; did you mean: {', '.join(close)}" if close else ""
        raise ValidationError(f"Unknown category: {name}{hint}")

    def get_or_create(self, name: str, description: Optional[str] = None) -> Category:
        clean = name.strip()
        if not clean:
            raise ValidationError("Category name cannot be empty")
        existing = self.resolve(clean)
        if existing:
            return existing
        category = Category(name=clean, description=description)
        self.session.add(category)
        self.session.flush()
        logger.info(f"category_registered: id={category.id} name={clean!r}")
        return category

    def create(self, data: CategoryIn) -> Category:
        clean = data.name.strip()
        if not clean:
            raise ValidationError("Category name cannot be empty")
        if self._by_name(clean):
            raise DuplicateCategoryError("Category with this name already exists")
        category = Category(name=clean, description=data.description)
        self.session.add(category)
        _commit(self.session)
        self.session.refresh(category)
        return category

    def rename(
        self, category_id: int, name: str, description: Optional[str] = None
    ) -> Category:
        category = self.get(category_id)
        clean = name.strip()
        if not clean:
            raise ValidationError("Category name cannot be empty")
        if self._by_name(clean, exclude_id=category.id):
            raise DuplicateCategoryError("Category with this name already exists")
        old_name = category.name
        category.name = clean
        category.description = description
        _commit(self.session)
        if old_name != clean:
            logger.info(f"category_renamed: id={category.id} from={old_name!r} to={clean!r}")
        return category

    def delete(self, category_id: int) -> None:
        with _budget_lock:
            category = self.get(category_id)
            lines = self.session.scalars(
                select(BudgetLine)
                .options(joinedload(BudgetLine.budget))
                .where(BudgetLine.category_id == category.id)
            ).all()
            if any(line.spent_cents for line in lines):
                raise ConflictError(
                    f"Category '{category.name}' has recorded spending in a budget"
                )
            txn_count = self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ).scalar_one()
            reimbursement_count = self.session.execute(
                select(func.count(ReimbursementRequest.id)).where(
                    ReimbursementRequest.category_id == category.id
                )
            ).scalar_one()
            if txn_count or reimbursement_count:
                raise ConflictError(
                    f"Category '{category.name}' is referenced by "
                    f"{txn_count} transaction(s) and "
                    f"{reimbursement_count} reimbursement request(s)"
                )
            for line in lines:
                _drop_line(line.budget, line)
            self.session.flush()
            # Dropped lines may still sit in a loaded collection.
            self.session.expire(category, ["budget_lines"])
            name = category.name
            self.session.delete(category)
            _commit(self.session)

        if lines:
            _record_history(
                self.history,
                "Category removed",
                f"Budget category '{name}' removed with the category",
                self.user_id,
            )


class BudgetService:
    def __init__(
        self, session: Session, user_id: Optional[int] = None, history=None
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.history = history or BudgetHistoryService(session, self.user_id)
        self.settings = get_settings()

    def _current(self) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .options(selectinload(Budget.lines).joinedload(BudgetLine.category))
            .order_by(Budget.created_at.desc(), Budget.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def _current_or_new(self) -> Budget:
        budget = self._current()
        if budget is None:
            budget = Budget(
                total_available_cents=self.settings.default_total_available_cents,
                total_spent_cents=0,
                lines=[],
            )
            self.session.add(budget)
            logger.info("budget_created: no stored budget, starting from default")
        return budget

    @staticmethod
    def _view(budget: Budget) -> BudgetView:
        return BudgetView(
            id=budget.id,
            version=budget.version,
            total_available_cents=budget.total_available_cents,
            total_spent_cents=budget.total_spent_cents,
            fiscal_year=budget.fiscal_year,
            categories={
                line.category.name: BudgetLineView(
                    allocated_cents=line.allocated_cents,
                    spent_cents=line.spent_cents,
                    description=line.description,
                    last_updated=line.last_updated,
                )
                for line in budget.lines
            },
        )

    def get_budget(self) -> BudgetView:
        budget = self._current()
        if budget is None:
            return BudgetView(
                id=None,
                version=0,
                total_available_cents=self.settings.default_total_available_cents,
                total_spent_cents=0,
                fiscal_year=None,
                categories={},
            )
        return self._view(budget)

    def save_budget(self, data: BudgetIn) -> BudgetView:
        registry = CategoryService(self.session, self.user_id, self.history)

        with _budget_lock:
            budget = self._current()
            stored_version = budget.version if budget else 0
            if data.version != stored_version:
                raise StaleWriteError(
                    f"Budget version {data.version} is stale; "
                    f"current version is {stored_version}"
                )

            resolved = {}
            for name, line_in in data.categories.items():
                category = registry.require(name)
                if category.id in resolved:
                    raise ValidationError(f"Category listed twice: {category.name}")
                resolved[category.id] = (category, line_in)

            if budget is None:
                budget = Budget(lines=[])
                self.session.add(budget)

            now = utcnow()
            for line in list(budget.lines):
                if line.category_id not in resolved:
                    budget.lines.remove(line)
            for category_id, (category, line_in) in resolved.items():
                line = budget.line_for(category_id)
                if line is None:
                    line = BudgetLine(category=category)
                    budget.lines.append(line)
                line.allocated_cents = line_in.allocated_cents
                line.spent_cents = line_in.spent_cents
                line.description = line_in.description
                line.last_updated = now

            budget.total_available_cents = data.total_available_cents
            budget.total_spent_cents = data.total_spent_cents
            budget.fiscal_year = data.fiscal_year
            _touch(budget)
            _commit(self.session)
            view = self._view(budget)

        logger.info(f"budget_saved: id={view.id} version={view.version}")
        _record_history(
            self.history,
            "Budget updated",
            f"Total budget set to {format_cents(view.total_available_cents)}",
            self.user_id,
        )
        return view

    def add_category(
        self,
        name: str,
        allocated_cents: int = 0,
        description: Optional[str] = None,
    ) -> BudgetView:
        if allocated_cents < 0:
            raise ValidationError("Allocated amount cannot be negative")
        registry = CategoryService(self.session, self.user_id, self.history)

        with _budget_lock:
            category = registry.get_or_create(name, description)
            budget = self._current_or_new()
            if budget.line_for(category.id) is not None:
                raise DuplicateCategoryError(
                    f"Budget already has a '{category.name}' category"
                )
            budget.lines.append(
                BudgetLine(
                    category=category,
                    allocated_cents=allocated_cents,
                    spent_cents=0,
                    description=description,
                    last_updated=utcnow(),
                )
            )
            budget.total_available_cents += allocated_cents
            _touch(budget)
            _commit(self.session)
            view = self._view(budget)

        _record_history(
            self.history,
            "Category added",
            f"'{category.name}' allocated {format_cents(allocated_cents)}",
            self.user_id,
        )
        return view

    def remove_category(self, name: str) -> BudgetView:
        registry = CategoryService(self.session, self.user_id, self.history)

        with _budget_lock:
            budget = self._current()
            category = registry.resolve(name)
            line = (
                budget.line_for(category.id)
                if budget is not None and category is not None
                else None
            )
            if line is None:
                raise NotFoundError(f"Budget category not found: {name}")
            _drop_line(budget, line)
            _commit(self.session)
            view = self._view(budget)

        _record_history(
            self.history,
            "Category removed",
            f"'{category.name}' removed from the budget",
            self.user_id,
        )
        return view

    def reconcile(
        self, old: Optional[Contribution], new: Optional[Contribution]
    ) -> Optional[Budget]:
        """Reverse ``old`` and apply ``new`` on the current budget.

        Does not commit; callers hold ``_budget_lock`` and commit together
        with the transaction change that caused the contribution.
        """
        if old == new:
            return None
        budget = self._current_or_new()
        now = utcnow()
        if old is not None:
            self._apply(budget, old, -1, now)
        if new is not None:
            self._apply(budget, new, 1, now)
        _touch(budget)
        return budget

    def _apply(
        self, budget: Budget, contribution: Contribution, sign: int, now: datetime
    ) -> None:
        amount = sign * contribution.amount_cents
        if contribution.type == TransactionType.income:
            budget.total_available_cents = _clamped(
                budget.total_available_cents + amount, "total_available_cents"
            )
            return

        line = None
        if contribution.category_id is not None:
            line = budget.line_for(contribution.category_id)
            if line is None and sign < 0:
                # Dropping the line already took its spent out of the total.
                logger.warning(
                    f"reconcile_missing_line: category_id={contribution.category_id}"
                )
                return

        budget.total_spent_cents = _clamped(
            budget.total_spent_cents + amount, "total_spent_cents"
        )
        if contribution.category_id is None:
            return
        if line is None:
            line = BudgetLine(
                category=self.session.get(Category, contribution.category_id),
                allocated_cents=0,
                spent_cents=0,
            )
            budget.lines.append(line)
        line.spent_cents = _clamped(line.spent_cents + amount, "spent_cents")
        line.last_updated = now

    def utilization(self) -> list[dict[str, object]]:
        budget = self.get_budget()
        rows: list[dict[str, object]] = []
        for name in sorted(budget.categories):
            line = budget.categories[name]
            rows.append(
                {
                    "category": name,
                    "allocated_cents": line.allocated_cents,
                    "spent_cents": line.spent_cents,
                    "remaining_cents": line.allocated_cents - line.spent_cents,
                    "percent_used": _percent(line.spent_cents, line.allocated_cents),
                }
            )
        rows.append(
            {
                "category": None,
                "allocated_cents": budget.total_available_cents,
                "spent_cents": budget.total_spent_cents,
                "remaining_cents": budget.total_available_cents
                - budget.total_spent_cents,
                "percent_used": _percent(
                    budget.total_spent_cents, budget.total_available_cents
                ),
            }
        )
        return rows


class TransactionService:
    _CLEARABLE_FIELDS = {"category", "invoice_id"}

    def __init__(
        self, session: Session, user_id: Optional[int] = None, history=None
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.history = history or BudgetHistoryService(session, self.user_id)
        self.categories = CategoryService(session, self.user_id, self.history)
        self.budgets = BudgetService(session, self.user_id, self.history)

    def _category_id(self, name: Optional[str]) -> Optional[int]:
        if name is None or not name.strip():
            return None
        return self.categories.require(name).id

    def _insert(self, data: TransactionIn, category_id: Optional[int]) -> Transaction:
        txn = Transaction(
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            category_id=category_id,
            date=data.date,
            status=data.status,
            invoice_id=data.invoice_id,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    @staticmethod
    def _describe(txn: Transaction) -> str:
        return f"{txn.type.value} of {format_cents(txn.amount_cents)}: {txn.description}"

    def _log_budget_change(self, action: str, details: str) -> None:
        _record_history(self.history, action, details, self.user_id)

    def record(self, data: TransactionIn) -> Transaction:
        category_id = self._category_id(data.category)
        with _budget_lock:
            txn = self._insert(data, category_id)
            budget = self.budgets.reconcile(None, Contribution.of(txn))
            _commit(self.session)
        logger.info(
            f"transaction_recorded: id={txn.id} type={txn.type.value} "
            f"status={txn.status.value} amount_cents={txn.amount_cents}"
        )
        if budget is not None:
            self._log_budget_change("Transaction recorded", self._describe(txn))
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def amend(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        changes = patch.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if value is None and field not in self._CLEARABLE_FIELDS:
                raise ValidationError(f"Field '{field}' cannot be cleared")
        category_id = (
            self._category_id(changes.pop("category")) if "category" in changes else None
        )

        with _budget_lock:
            txn = self.get(transaction_id)
            old = Contribution.of(txn)
            if "category" in patch.model_fields_set:
                txn.category_id = category_id
            for field, value in changes.items():
                setattr(txn, field, value)
            new = Contribution.of(txn)
            budget = self.budgets.reconcile(old, new)
            _commit(self.session)

        logger.info(
            f"transaction_amended: id={txn.id} fields={sorted(patch.model_fields_set)}"
        )
        if budget is not None:
            self._log_budget_change("Transaction amended", self._describe(txn))
        return txn

    def retract(self, transaction_id: int) -> None:
        with _budget_lock:
            txn = self.get(transaction_id)
            details = self._describe(txn)
            budget = self.budgets.reconcile(Contribution.of(txn), None)
            self.session.execute(
                update(ReimbursementRequest)
                .where(ReimbursementRequest.transaction_id == txn.id)
                .values(transaction_id=None)
            )
            self.session.delete(txn)
            _commit(self.session)
        logger.info(f"transaction_retracted: id={transaction_id}")
        if budget is not None:
            self._log_budget_change("Transaction retracted", details)

    def list(self, query: Optional[TransactionQuery] = None) -> list[Transaction]:
        query = query or TransactionQuery()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(query.limit)
        )
        if query.status:
            stmt = stmt.where(Transaction.status == query.status)
        if query.type:
            stmt = stmt.where(Transaction.type == query.type)
        if query.category:
            category = self.categories.resolve(query.category)
            if category is None:
                return []
            stmt = stmt.where(Transaction.category_id == category.id)
        if query.start:
            stmt = stmt.where(Transaction.date >= query.start)
        if query.end:
            stmt = stmt.where(Transaction.date <= query.end)
        return self.session.scalars(stmt).all()

    def summary(self, limit: int = 5) -> dict[str, object]:
        signed = case(
            (Transaction.type == TransactionType.income, Transaction.amount_cents),
            else_=-Transaction.amount_cents,
        )
        count, net = self.session.execute(
            select(
                func.count(Transaction.id), func.coalesce(func.sum(signed), 0)
            ).where(Transaction.status == TransactionStatus.completed)
        ).one()
        recent = self.list(
            TransactionQuery(status=TransactionStatus.completed, limit=limit)
        )
        return {"count": int(count or 0), "net_cents": int(net or 0), "recent": recent}


class ReimbursementService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        history=None,
        blob_store: Optional[BlobStore] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.history = history or BudgetHistoryService(session, self.user_id)
        self.transactions = TransactionService(session, self.user_id, self.history)
        self.settings = get_settings()
        self._blob_store = blob_store

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = get_blob_store(self.settings)
        return self._blob_store

    def create(self, data: ReimbursementIn) -> ReimbursementRequest:
        category_id = self.transactions._category_id(data.category)
        request = ReimbursementRequest(
            invoice_id=data.invoice_id,
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description,
            category_id=category_id,
            status=ReimbursementStatus.pending,
        )
        self.session.add(request)
        _commit(self.session)
        self.session.refresh(request)
        logger.info(
            f"reimbursement_created: id={request.id} amount_cents={request.amount_cents}"
        )
        return request

    def get(self, request_id: int) -> ReimbursementRequest:
        stmt = (
            select(ReimbursementRequest)
            .options(
                joinedload(ReimbursementRequest.category),
                selectinload(ReimbursementRequest.attachments),
            )
            .where(ReimbursementRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = self.session.scalar(stmt)
        if not request:
            raise NotFoundError("Reimbursement request not found")
        return request

    def list(
        self, query: Optional[ReimbursementQuery] = None
    ) -> list[ReimbursementRequest]:
        query = query or ReimbursementQuery()
        stmt = select(ReimbursementRequest).order_by(
            ReimbursementRequest.created_at.desc(), ReimbursementRequest.id.desc()
        )
        if query.status:
            stmt = stmt.where(ReimbursementRequest.status == query.status)
        if query.user_id:
            stmt = stmt.where(ReimbursementRequest.user_id == query.user_id)
        return self.session.scalars(stmt).all()

    def _pending(self, request_id: int) -> ReimbursementRequest:
        request = self.get(request_id)
        if request.status != ReimbursementStatus.pending:
            raise InvalidStateError(
                f"Reimbursement request is {request.status.value}, not pending"
            )
        return request

    def approve(self, request_id: int) -> ReimbursementRequest:
        with _budget_lock:
            request = self._pending(request_id)
            category = request.category or self.transactions.categories.get_or_create(
                self.settings.reimbursement_category
            )
            # Request amounts are positive; approval always spends them.
            txn = self.transactions._insert(
                TransactionIn(
                    type=TransactionType.expense,
                    amount_cents=request.amount_cents,
                    description=f"Reimbursement: {request.description}"[:200],
                    date=date.today(),
                    status=TransactionStatus.completed,
                    invoice_id=request.invoice_id,
                ),
                category.id,
            )
            request.status = ReimbursementStatus.approved
            request.updated_at = utcnow()
            request.transaction_id = txn.id
            self.transactions.budgets.reconcile(None, Contribution.of(txn))
            _commit(self.session)

        logger.info(
            f"reimbursement_approved: id={request.id} transaction_id={txn.id} "
            f"category={category.name!r}"
        )
        _record_history(
            self.history,
            "Reimbursement approved",
            f"{format_cents(request.amount_cents)} charged to '{category.name}'",
            self.user_id,
        )
        return request

    def reject(self, request_id: int) -> ReimbursementRequest:
        request = self._pending(request_id)
        request.status = ReimbursementStatus.rejected
        request.updated_at = utcnow()
        _commit(self.session)
        logger.info(f"reimbursement_rejected: id={request.id}")
        return request

    def add_attachment(
        self, request_id: int, file_name: str, content: bytes, file_type: str
    ) -> ReimbursementAttachment:
        request = self._pending(request_id)
        clean_name = PurePosixPath(file_name.replace("\\", "/")).name
        if not clean_name or clean_name in {".", ".."}:
            raise ValidationError("Attachment needs a file name")
        # Unique key per upload; two receipts may share a file name.
        path = f"reimbursements/{request.id}/{uuid4().hex}-{clean_name}"
        self.blob_store.upload(path, content, file_type)
        attachment = ReimbursementAttachment(
            file_name=clean_name,
            file_path=path,
            file_type=file_type,
        )
        request.attachments.append(attachment)
        _commit(self.session)
        return attachment

    def delete(self, request_id: int) -> None:
        request = self.get(request_id)
        if (
            request.status == ReimbursementStatus.approved
            and request.transaction_id is not None
        ):
            raise ConflictError(
                "Approved reimbursement still affects the budget; "
                "retract its transaction first"
            )

        for attachment in list(request.attachments):
            try:
                self.blob_store.delete(attachment.file_path)
            except DependencyError:
                logger.exception(
                    f"attachment_delete_failed: reimbursement_id={request.id} "
                    f"path={attachment.file_path!r}"
                )
            request.attachments.remove(attachment)
        self.session.flush()
        self.session.delete(request)
        _commit(self.session)
        logger.info(f"reimbursement_deleted: id={request_id}")

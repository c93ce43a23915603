import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import (
    ConflictError,
    DuplicateCategoryError,
    NotFoundError,
    ValidationError,
)
from models import TransactionStatus, TransactionType
from schemas import BudgetIn, CategoryIn, ReimbursementIn, TransactionIn
from services import (
    BudgetHistoryService,
    BudgetService,
    CategoryService,
    ReimbursementService,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_category_names_are_unique_ignoring_case() -> None:
    session = make_session()
    service = CategoryService(session)
    service.create(CategoryIn(name="Supplies"))
    with pytest.raises(DuplicateCategoryError):
        service.create(CategoryIn(name="  supplies "))
    with pytest.raises(ValidationError):
        service.create(CategoryIn(name="   "))
    assert [c.name for c in service.list_all()] == ["Supplies"]


def test_list_all_is_ordered_by_name() -> None:
    session = make_session()
    service = CategoryService(session)
    for name in ("Travel", "Events", "Supplies"):
        service.create(CategoryIn(name=name))
    assert [c.name for c in service.list_all()] == ["Events", "Supplies", "Travel"]


def test_rename_keeps_budget_line_and_transactions() -> None:
    session = make_session()
    categories = CategoryService(session)
    budgets = BudgetService(session)
    budgets.add_category("Supplies", 10_000)
    txn = TransactionService(session).record(
        TransactionIn(
            type=TransactionType.expense,
            amount_cents=2_500,
            description="Stapler",
            category="Supplies",
            status=TransactionStatus.completed,
        )
    )
    supplies = categories.resolve("Supplies")

    renamed = categories.rename(supplies.id, "Office supplies", "Desk items")
    assert renamed.id == supplies.id
    assert renamed.description == "Desk items"

    budget = budgets.get_budget()
    assert set(budget.categories) == {"Office supplies"}
    assert budget.categories["Office supplies"].spent_cents == 2_500
    assert TransactionService(session).get(txn.id).category_id == supplies.id


def test_rename_rejects_taken_name_and_unknown_id() -> None:
    session = make_session()
    service = CategoryService(session)
    travel = service.create(CategoryIn(name="Travel"))
    service.create(CategoryIn(name="Events"))

    with pytest.raises(DuplicateCategoryError):
        service.rename(travel.id, "EVENTS")
    with pytest.raises(NotFoundError):
        service.rename(travel.id + 50, "Anything")
    assert service.rename(travel.id, "travel").name == "travel"


def test_delete_refuses_category_with_spending() -> None:
    session = make_session()
    BudgetService(session).add_category("Events", 10_000)
    TransactionService(session).record(
        TransactionIn(
            type=TransactionType.expense,
            amount_cents=1_000,
            description="Room hire",
            category="Events",
            status=TransactionStatus.completed,
        )
    )
    service = CategoryService(session)
    with pytest.raises(ConflictError):
        service.delete(service.resolve("Events").id)
    assert BudgetService(session).get_budget().categories["Events"].spent_cents == 1_000


def test_delete_refuses_category_still_referenced() -> None:
    session = make_session()
    service = CategoryService(session)
    travel = service.create(CategoryIn(name="Travel"))
    events = service.create(CategoryIn(name="Events"))
    TransactionService(session).record(
        TransactionIn(
            type=TransactionType.expense,
            amount_cents=400,
            description="Taxi",
            category="Travel",
            status=TransactionStatus.pending,
        )
    )
    ReimbursementService(session).create(
        ReimbursementIn(invoice_id="INV-7", amount_cents=800, category="Events")
    )

    with pytest.raises(ConflictError):
        service.delete(travel.id)
    with pytest.raises(ConflictError):
        service.delete(events.id)
    with pytest.raises(NotFoundError):
        service.delete(events.id + travel.id + 10)


def test_delete_drops_unspent_line_and_restores_totals() -> None:
    session = make_session()
    budgets = BudgetService(session)
    budgets.save_budget(
        BudgetIn(version=0, total_available_cents=50_000, total_spent_cents=0)
    )
    budgets.add_category("Events", 10_000)
    assert budgets.get_budget().total_available_cents == 60_000

    service = CategoryService(session)
    service.delete(service.resolve("Events").id)

    budget = budgets.get_budget()
    assert budget.total_available_cents == 50_000
    assert budget.categories == {}
    assert service.list_all() == []
    assert BudgetHistoryService(session).list(limit=1)[0].action == "Category removed"


def test_resolution_is_exact_and_suggests_close_names() -> None:
    session = make_session()
    service = CategoryService(session)
    service.create(CategoryIn(name="Car"))
    service.create(CategoryIn(name="Cat"))
    service.create(CategoryIn(name="Travel"))

    assert service.resolve(" cat ").name == "Cat"
    assert service.resolve("Trave") is None
    assert service.resolve("") is None

    assert service.suggestions("Cab") == ["Car", "Cat"]
    assert service.suggestions("Travle") == []
    with pytest.raises(ValidationError, match="did you mean: Car, Cat"):
        service.require("Cab")
    with pytest.raises(ValidationError) as excinfo:
        service.require("Hotel")
    assert "did you mean" not in str(excinfo.value)
    assert service.require("TRAVEL").name == "Travel"

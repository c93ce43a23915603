import logging

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConflictError, DependencyError, InvalidStateError, NotFoundError
from models import (
    ReimbursementAttachment,
    ReimbursementRequest,
    ReimbursementStatus,
    TransactionStatus,
    TransactionType,
)
from schemas import (
    BudgetIn,
    BudgetLineIn,
    CategoryIn,
    ReimbursementIn,
    ReimbursementQuery,
)
from services import (
    BudgetService,
    CategoryService,
    ReimbursementService,
    TransactionService,
)
from storage import LocalBlobStore


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed_travel_budget(session) -> None:
    CategoryService(session).create(CategoryIn(name="Travel"))
    BudgetService(session).save_budget(
        BudgetIn(
            version=0,
            total_available_cents=200_000,
            total_spent_cents=0,
            categories={
                "Travel": BudgetLineIn(allocated_cents=80_000, spent_cents=0)
            },
        )
    )


def train_ticket(category="Travel", amount_cents=12_000) -> ReimbursementIn:
    return ReimbursementIn(
        invoice_id="INV-2025-014",
        amount_cents=amount_cents,
        description="Train to the partner meeting",
        category=category,
    )


def test_approval_records_expense_and_charges_category() -> None:
    session = make_session()
    seed_travel_budget(session)
    reimb = ReimbursementService(session)

    request = reimb.create(train_ticket())
    assert request.status == ReimbursementStatus.pending
    assert BudgetService(session).get_budget().total_spent_cents == 0

    approved = reimb.approve(request.id)
    assert approved.status == ReimbursementStatus.approved

    txn = TransactionService(session).get(approved.transaction_id)
    assert txn.type == TransactionType.expense
    assert txn.status == TransactionStatus.completed
    assert txn.amount_cents == 12_000
    assert txn.description == "Reimbursement: Train to the partner meeting"
    assert txn.invoice_id == "INV-2025-014"
    assert txn.category.name == "Travel"

    budget = BudgetService(session).get_budget()
    assert budget.total_spent_cents == 12_000
    assert budget.categories["Travel"].spent_cents == 12_000
    assert budget.total_available_cents == 200_000

    with pytest.raises(InvalidStateError):
        reimb.approve(request.id)
    assert BudgetService(session).get_budget().total_spent_cents == 12_000


def test_approval_without_category_uses_reimbursement_category() -> None:
    session = make_session()
    reimb = ReimbursementService(session)

    request = reimb.create(train_ticket(category=None, amount_cents=5_000))
    reimb.approve(request.id)

    fallback = CategoryService(session).resolve("Reimbursement")
    assert fallback is not None
    budget = BudgetService(session).get_budget()
    assert budget.total_spent_cents == 5_000
    assert budget.categories["Reimbursement"].spent_cents == 5_000
    assert budget.categories["Reimbursement"].allocated_cents == 0


def test_rejection_leaves_budget_alone_and_is_final() -> None:
    session = make_session()
    seed_travel_budget(session)
    reimb = ReimbursementService(session)
    before = BudgetService(session).get_budget()

    request = reimb.create(train_ticket())
    rejected = reimb.reject(request.id)
    assert rejected.status == ReimbursementStatus.rejected
    assert rejected.transaction_id is None
    assert BudgetService(session).get_budget() == before

    with pytest.raises(InvalidStateError):
        reimb.approve(request.id)
    with pytest.raises(InvalidStateError):
        reimb.reject(request.id)
    assert TransactionService(session).list() == []


def test_unknown_request_is_not_found() -> None:
    session = make_session()
    reimb = ReimbursementService(session)
    with pytest.raises(NotFoundError):
        reimb.get(404)
    with pytest.raises(NotFoundError):
        reimb.approve(404)
    with pytest.raises(NotFoundError):
        reimb.reject(404)
    with pytest.raises(NotFoundError):
        reimb.delete(404)


def test_approved_request_cannot_be_deleted_while_its_expense_exists() -> None:
    session = make_session()
    seed_travel_budget(session)
    reimb = ReimbursementService(session)
    request = reimb.approve(reimb.create(train_ticket()).id)

    with pytest.raises(ConflictError):
        reimb.delete(request.id)

    TransactionService(session).retract(request.transaction_id)
    assert reimb.get(request.id).transaction_id is None
    assert BudgetService(session).get_budget().categories["Travel"].spent_cents == 0

    reimb.delete(request.id)
    assert session.get(ReimbursementRequest, request.id) is None


def test_attachments_are_stored_and_removed_with_request(tmp_path) -> None:
    session = make_session()
    reimb = ReimbursementService(session, blob_store=LocalBlobStore(tmp_path))
    request = reimb.create(train_ticket(category=None))

    attachment = reimb.add_attachment(
        request.id, "../../etc/receipt.pdf", b"%PDF-1.4", "application/pdf"
    )
    assert attachment.file_name == "receipt.pdf"
    assert attachment.file_path.startswith(f"reimbursements/{request.id}/")
    assert attachment.file_path.endswith("-receipt.pdf")
    stored = tmp_path / attachment.file_path
    assert stored.read_bytes() == b"%PDF-1.4"
    assert [a.id for a in reimb.get(request.id).attachments] == [attachment.id]

    reimb.delete(request.id)
    assert not stored.exists()
    assert session.scalars(select(ReimbursementAttachment)).all() == []


def test_same_file_name_twice_keeps_both_blobs(tmp_path) -> None:
    session = make_session()
    reimb = ReimbursementService(session, blob_store=LocalBlobStore(tmp_path))
    request = reimb.create(train_ticket(category=None))

    first = reimb.add_attachment(
        request.id, "receipt.pdf", b"outbound", "application/pdf"
    )
    second = reimb.add_attachment(
        request.id, "receipt.pdf", b"return", "application/pdf"
    )

    assert first.file_path != second.file_path
    assert (tmp_path / first.file_path).read_bytes() == b"outbound"
    assert (tmp_path / second.file_path).read_bytes() == b"return"

    reimb.delete(request.id)
    assert not (tmp_path / first.file_path).exists()
    assert not (tmp_path / second.file_path).exists()
    assert session.scalars(select(ReimbursementAttachment)).all() == []


class UnreachableStore(LocalBlobStore):
    def delete(self, path: str) -> None:
        raise DependencyError(f"Failed to delete blob {path}")


def test_blob_failure_does_not_block_request_delete(tmp_path, caplog) -> None:
    session = make_session()
    reimb = ReimbursementService(session, blob_store=UnreachableStore(tmp_path))
    request = reimb.create(train_ticket(category=None))
    reimb.add_attachment(request.id, "ticket.png", b"png", "image/png")

    with caplog.at_level(logging.ERROR, logger="services"):
        reimb.delete(request.id)

    assert session.get(ReimbursementRequest, request.id) is None
    assert session.scalars(select(ReimbursementAttachment)).all() == []
    assert "attachment_delete_failed" in caplog.text


def test_attachments_only_while_pending(tmp_path) -> None:
    session = make_session()
    seed_travel_budget(session)
    reimb = ReimbursementService(session, blob_store=LocalBlobStore(tmp_path))
    request = reimb.approve(reimb.create(train_ticket()).id)

    with pytest.raises(InvalidStateError):
        reimb.add_attachment(request.id, "late.pdf", b"late", "application/pdf")
    assert not (tmp_path / "reimbursements").exists()


def test_list_filters_by_status() -> None:
    session = make_session()
    seed_travel_budget(session)
    reimb = ReimbursementService(session)
    first = reimb.create(train_ticket())
    second = reimb.create(train_ticket(amount_cents=3_000))
    third = reimb.create(train_ticket(amount_cents=900))
    reimb.approve(first.id)
    reimb.reject(third.id)

    pending = reimb.list(ReimbursementQuery(status=ReimbursementStatus.pending))
    assert [r.id for r in pending] == [second.id]
    assert [r.id for r in reimb.list()] == [third.id, second.id, first.id]
    assert reimb.list(ReimbursementQuery(user_id=2)) == []

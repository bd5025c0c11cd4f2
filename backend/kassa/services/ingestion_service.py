# Overview: Idempotent sale ingestion; turns till submissions into receipts exactly once.

"""
Sale Ingestion Service

WHY: Tills record sales locally first and replay them whenever the network
allows. The same sale can therefore arrive many times (retries after a
timeout, a second terminal pass, a user pressing "sync" twice). Every
arrival after the first must be a harmless success.

DESIGN:
- The idempotency key is the till's local_id, stored as Receipt.offline_id
  under a unique constraint.
- Existence check and insert happen in one transaction; if a concurrent
  request wins the race, the insert fails with IntegrityError and this
  request reports already_synced instead.
- Inventory is applied in the same transaction as the receipt insert, so a
  receipt and its stock effect commit or roll back together.
- Bulk submissions commit per item: a malformed sale is reported on its own
  and never rolls back its siblings.

STOCK-CHECK POLICY:
- Offline (bulk) sales: no availability check; the sale already happened.
- Online sales by admin/cashier: preflight check_stock() for non-returns.
- Helper sales: land as pending staff receipts; stock is checked at approval.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, Receipt, ReceiptLine, User
from ..models.receipts import RECEIPT_STATUS_COMPLETED, RECEIPT_STATUS_PENDING
from ..validation import (
    KassaError,
    NotFoundError,
    SaleSubmission,
    ValidationError,
    parse_sale_submission,
)
from kassa.time_utils import utcnow
from . import inventory_service

logger = logging.getLogger(__name__)

OUTCOME_SYNCED = "synced"
OUTCOME_ALREADY_SYNCED = "already_synced"
OUTCOME_ERROR = "error"


@dataclass
class IngestOutcome:
    """Result of ingesting one submission."""
    offline_id: str | None
    status: str
    receipt: Receipt | None = None
    error: KassaError | None = None

    @property
    def ok(self) -> bool:
        return self.status in (OUTCOME_SYNCED, OUTCOME_ALREADY_SYNCED)

    def to_dict(self) -> dict:
        data = {"offline_id": self.offline_id, "status": self.status}
        if self.receipt is not None:
            data["receipt_id"] = self.receipt.id
            data["receipt_status"] = self.receipt.status
        if self.error is not None:
            data["error"] = self.error.code
            data["message"] = self.error.message
            if self.error.details:
                data["details"] = self.error.details
        return data


def find_by_offline_id(offline_id: str) -> Receipt | None:
    return db.session.query(Receipt).filter_by(offline_id=offline_id).first()


def build_lines(submission: SaleSubmission) -> list[ReceiptLine]:
    return [
        ReceiptLine(
            line_no=index,
            product_id=line.product_id,
            name=line.name,
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            line_total_cents=line.line_total_cents,
        )
        for index, line in enumerate(submission.lines, start=1)
    ]


def _create_receipt(submission: SaleSubmission, user: User, *, offline: bool, check_stock: bool) -> Receipt:
    """Build, persist and (for trusted roles) apply a receipt. Does not commit."""
    if submission.customer_id is not None and db.session.get(Customer, submission.customer_id) is None:
        raise NotFoundError(
            f"Customer {submission.customer_id} not found",
            details={"customer_id": submission.customer_id},
        )

    inventory_service.ensure_products_exist(line.product_id for line in submission.lines)

    trusted = user.is_trusted
    if trusted and check_stock and not submission.is_return:
        inventory_service.check_stock(submission.lines)

    now = utcnow()
    receipt = Receipt(
        offline_id=submission.offline_id,
        status=RECEIPT_STATUS_COMPLETED if trusted else RECEIPT_STATUS_PENDING,
        payment_method=submission.payment_method,
        is_return=submission.is_return,
        total_cents=submission.total_cents,
        customer_id=submission.customer_id,
        created_by_user_id=user.id,
        created_at=submission.created_at or now,
        synced_at=now if offline else None,
    )
    receipt.lines = build_lines(submission)
    db.session.add(receipt)
    db.session.flush()

    if trusted:
        inventory_service.apply_receipt(receipt, actor_user_id=user.id)

    return receipt


def ingest(submission: SaleSubmission, user: User, *, offline: bool) -> IngestOutcome:
    """
    Ingest one validated submission and commit.

    Returns already_synced without touching stock when the offline_id is
    known. KassaError subclasses propagate after rollback.
    """
    if submission.offline_id:
        existing = find_by_offline_id(submission.offline_id)
        if existing is not None:
            logger.info("Sale %s already synced as receipt %s", submission.offline_id, existing.id)
            return IngestOutcome(submission.offline_id, OUTCOME_ALREADY_SYNCED, receipt=existing)

    try:
        receipt = _create_receipt(submission, user, offline=offline, check_stock=not offline)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if submission.offline_id:
            existing = find_by_offline_id(submission.offline_id)
            if existing is not None:
                logger.info("Lost insert race for sale %s; reporting already synced", submission.offline_id)
                return IngestOutcome(submission.offline_id, OUTCOME_ALREADY_SYNCED, receipt=existing)
        raise ValidationError("Sale violates a data constraint") from exc
    except KassaError:
        db.session.rollback()
        raise

    logger.info(
        "Ingested sale %s as receipt %s (status=%s, offline=%s)",
        submission.offline_id, receipt.id, receipt.status, offline,
    )
    return IngestOutcome(submission.offline_id, OUTCOME_SYNCED, receipt=receipt)


def ingest_online(data: dict, user: User) -> IngestOutcome:
    """
    Ingest a single sale made while the till was online.

    offline_id is optional here; when supplied it still deduplicates.
    Raises ValidationError / NotFoundError / InsufficientStockError.
    """
    submission = parse_sale_submission(data, require_offline_id=False)
    return ingest(submission, user, offline=False)


def ingest_bulk(sales: list, user: User) -> list[IngestOutcome]:
    """
    Ingest a batch of offline sales, one transaction per item.

    Returns a list of outcomes parallel to sales. Errors are captured per
    item and never abort the rest of the batch.
    """
    if not isinstance(sales, list) or not sales:
        raise ValidationError("sales must be a non-empty list")

    outcomes: list[IngestOutcome] = []
    for raw in sales:
        offline_id = raw.get("offline_id") if isinstance(raw, dict) else None
        try:
            submission = parse_sale_submission(raw, require_offline_id=True)
            outcomes.append(ingest(submission, user, offline=True))
        except KassaError as exc:
            db.session.rollback()
            logger.warning("Rejected offline sale %s: %s", offline_id, exc.message)
            outcomes.append(IngestOutcome(offline_id, OUTCOME_ERROR, error=exc))
        except (SQLAlchemyError, OverflowError) as exc:
            db.session.rollback()
            logger.exception("Could not store offline sale %s", offline_id)
            error = ValidationError("Sale could not be stored", details={"reason": type(exc).__name__})
            outcomes.append(IngestOutcome(offline_id, OUTCOME_ERROR, error=error))

    return outcomes


def summarize(outcomes: list[IngestOutcome]) -> dict:
    synced = sum(1 for o in outcomes if o.ok)
    return {
        "success": True,
        "synced": synced,
        "failed": len(outcomes) - synced,
        "results": [o.to_dict() for o in outcomes],
    }

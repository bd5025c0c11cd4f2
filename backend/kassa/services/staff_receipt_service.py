"""
Staff Receipt Review Service

WHY: Helpers may ring up sales but must not move stock on their own. Their
receipts wait in a review queue until an admin or cashier decides.

LIFECYCLE:
1. Created by a helper -> PENDING (no stock effect)
2. Approve -> APPROVED: stock re-checked (it may have drifted since the
   helper submitted), then applied once
3. Reject -> REJECTED: no stock effect
APPROVED and REJECTED are terminal. A second decision raises
AlreadyProcessedError, so stock is never decremented twice.

While PENDING a reviewer may edit the line items; the edit does not change
the status.

CONCURRENCY: Each transition locks the receipt row (BEGIN IMMEDIATE on
SQLite), re-reads the status, and relies on the receipt's version column.
A concurrent reviewer that slips past the lock hits StaleDataError and is
retried, at which point it sees the terminal status.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Receipt, ReceiptLine
from ..models.receipts import (
    RECEIPT_STATUS_APPROVED,
    RECEIPT_STATUS_PENDING,
    RECEIPT_STATUS_REJECTED,
    STAFF_RECEIPT_STATUSES,
)
from ..validation import AlreadyProcessedError, NotFoundError, parse_line_items
from kassa.time_utils import utcnow
from . import inventory_service
from .concurrency import begin_immediate, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _load_pending_locked(receipt_id: int) -> Receipt:
    begin_immediate()
    receipt = lock_for_update(db.session.query(Receipt).filter_by(id=receipt_id)).first()
    if receipt is None:
        raise NotFoundError(f"Receipt {receipt_id} not found", details={"receipt_id": receipt_id})

    if receipt.status != RECEIPT_STATUS_PENDING:
        raise AlreadyProcessedError(
            f"Receipt {receipt_id} has already been processed",
            details={"receipt_id": receipt_id, "status": receipt.status},
        )
    return receipt


def approve(receipt_id: int, actor_user_id: int) -> Receipt:
    """
    Approve a pending staff receipt and apply it to stock.

    Raises:
        NotFoundError: receipt or one of its products is missing
        AlreadyProcessedError: receipt is not pending
        InsufficientStockError: stock no longer covers a non-return receipt;
            the receipt stays pending
    """
    def _op():
        try:
            receipt = _load_pending_locked(receipt_id)

            if not receipt.is_return:
                inventory_service.check_stock(receipt.lines)

            inventory_service.apply_receipt(
                receipt,
                reason=inventory_service.REASON_STAFF_APPROVAL,
                actor_user_id=actor_user_id,
            )

            receipt.status = RECEIPT_STATUS_APPROVED
            receipt.processed_by_user_id = actor_user_id
            receipt.processed_at = utcnow()

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Receipt %s approved by user %s", receipt.id, actor_user_id)
        return receipt

    return run_with_retry(_op)


def reject(receipt_id: int, actor_user_id: int) -> Receipt:
    """
    Reject a pending staff receipt. Stock is untouched.

    Raises NotFoundError / AlreadyProcessedError.
    """
    def _op():
        try:
            receipt = _load_pending_locked(receipt_id)

            receipt.status = RECEIPT_STATUS_REJECTED
            receipt.processed_by_user_id = actor_user_id
            receipt.processed_at = utcnow()

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Receipt %s rejected by user %s", receipt.id, actor_user_id)
        return receipt

    return run_with_retry(_op)


def update_lines(receipt_id: int, raw_lines: list, actor_user_id: int) -> Receipt:
    """
    Replace the line items of a pending staff receipt.

    The total is recomputed and updated_at moves forward; status stays
    pending. Raises ValidationError / NotFoundError / AlreadyProcessedError.
    """
    lines = parse_line_items(raw_lines)

    def _op():
        try:
            receipt = _load_pending_locked(receipt_id)
            inventory_service.ensure_products_exist(line.product_id for line in lines)

            receipt.lines.clear()
            db.session.flush()
            receipt.lines = [
                ReceiptLine(
                    line_no=index,
                    product_id=line.product_id,
                    name=line.name,
                    unit_price_cents=line.unit_price_cents,
                    quantity=line.quantity,
                    line_total_cents=line.line_total_cents,
                )
                for index, line in enumerate(lines, start=1)
            ]
            receipt.total_cents = sum(line.line_total_cents for line in lines)
            receipt.updated_at = utcnow()

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Receipt %s lines edited by user %s", receipt.id, actor_user_id)
        return receipt

    return run_with_retry(_op)


def list_staff_receipts(status: str | None = None) -> list[Receipt]:
    """Staff receipts, newest first, optionally filtered by one status."""
    q = db.session.query(Receipt).filter(Receipt.status.in_(STAFF_RECEIPT_STATUSES))
    if status and status != "all":
        q = q.filter(Receipt.status == status)
    return q.order_by(Receipt.created_at.desc(), Receipt.id.desc()).all()


def count_pending() -> int:
    return db.session.query(Receipt).filter_by(status=RECEIPT_STATUS_PENDING).count()

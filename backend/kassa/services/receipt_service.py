# Overview: Read-side queries for receipts.

from __future__ import annotations

from ..extensions import db
from ..models import Receipt
from ..models.receipts import RECEIPT_STATUSES
from ..validation import NotFoundError, ValidationError


def get_receipt(receipt_id: int) -> Receipt:
    receipt = db.session.get(Receipt, receipt_id)
    if receipt is None:
        raise NotFoundError(f"Receipt {receipt_id} not found", details={"receipt_id": receipt_id})
    return receipt


def list_receipts(status: str | None = None, created_by_user_id: int | None = None, limit: int | None = None) -> list[Receipt]:
    """All receipts newest first; status "all" or None means no status filter."""
    q = db.session.query(Receipt)
    if status and status != "all":
        if status not in RECEIPT_STATUSES:
            raise ValidationError(f"status must be one of: all, {', '.join(RECEIPT_STATUSES)}")
        q = q.filter(Receipt.status == status)
    if created_by_user_id is not None:
        q = q.filter(Receipt.created_by_user_id == created_by_user_id)
    q = q.order_by(Receipt.created_at.desc(), Receipt.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()

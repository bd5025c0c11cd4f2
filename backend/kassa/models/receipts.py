from __future__ import annotations

from ..extensions import db
from kassa.time_utils import to_utc_z, utcnow


RECEIPT_STATUS_COMPLETED = "completed"
RECEIPT_STATUS_PENDING = "pending"
RECEIPT_STATUS_APPROVED = "approved"
RECEIPT_STATUS_REJECTED = "rejected"

RECEIPT_STATUSES = (
    RECEIPT_STATUS_COMPLETED,
    RECEIPT_STATUS_PENDING,
    RECEIPT_STATUS_APPROVED,
    RECEIPT_STATUS_REJECTED,
)

# Statuses that belong to the staff review workflow
STAFF_RECEIPT_STATUSES = (
    RECEIPT_STATUS_PENDING,
    RECEIPT_STATUS_APPROVED,
    RECEIPT_STATUS_REJECTED,
)

PAYMENT_METHODS = ("cash", "card")


class Receipt(db.Model):
    """
    Server-authoritative record of a sale or return.

    offline_id carries the terminal's idempotency key. It is unique, so the
    "does this sale already exist" check and the insert are decided by the
    database as a single step.

    Receipts are immutable after creation except for the staff review
    transition (status, processed_by_user_id, processed_at) and line edits
    while still pending.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.UniqueConstraint("offline_id", name="uq_receipts_offline_id"),
        db.Index("ix_receipts_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Client idempotency key (NULL for receipts created without one)
    offline_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RECEIPT_STATUS_COMPLETED, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    is_return = db.Column(db.Boolean, nullable=False, default=False)

    # Recomputed from lines on the server, never taken from the client
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # NULL for walk-in sales
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Business time (terminal clock for offline sales)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    # When the server accepted an offline sale
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])
    customer = db.relationship("Customer")
    lines = db.relationship(
        "ReceiptLine",
        backref="receipt",
        order_by="ReceiptLine.line_no",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "offline_id": self.offline_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "is_return": self.is_return,
            "total_cents": self.total_cents,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "created_by": self.created_by.username if self.created_by else None,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "synced_at": to_utc_z(self.synced_at) if self.synced_at else None,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class ReceiptLine(db.Model):
    """Individual line items on a receipt."""
    __tablename__ = "receipt_lines"
    __table_args__ = (
        db.UniqueConstraint("receipt_id", "line_no", name="uq_receipt_lines_receipt_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Name and price as sold, not as currently listed
    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "line_no": self.line_no,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }

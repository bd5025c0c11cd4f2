# Overview: Inventory adjustment engine; turns accepted receipts into stock deltas.

# backend/kassa/services/inventory_service.py

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import update

from ..extensions import db
from ..models import Product, Receipt, ReceiptLine, StockMovement
from ..validation import InsufficientStockError, NotFoundError
"""
Kassa Inventory Invariants (authoritative)

Stock model:
- Product.quantity is a counter, changed only through increment_quantity(),
  which issues a single UPDATE ... SET quantity = quantity + :delta.
- Final stock = initial - sum(accepted sale quantities) + sum(accepted return
  quantities), each receipt line counted exactly once.

Sign convention:
- Non-return sale line: delta = -quantity
- Return line: delta = +quantity

Exactly-once:
- apply_receipt() is called at most once per receipt by its callers
  (ingestion dedup on offline_id, single-fire staff approval).
- Each applied line also writes a StockMovement row keyed by
  (receipt_id, line_no); a second application violates that unique key and
  the whole transaction rolls back.
- All lines of one receipt are applied in the caller's DB transaction, so a
  crash mid-receipt leaves no partial stock change.

Stock checks:
- Offline-originated sales are never stock-checked (the goods already left
  the shop). Online sales and staff approvals call check_stock() first.
"""

logger = logging.getLogger(__name__)

REASON_SALE = "SALE"
REASON_RETURN = "RETURN"
REASON_STAFF_APPROVAL = "STAFF_APPROVAL"


def line_delta(is_return: bool, quantity: int) -> int:
    """Signed stock delta for one line."""
    return quantity if is_return else -quantity


def increment_quantity(product_id: int, delta: int) -> None:
    """
    Atomically add delta to a product's stock counter.

    Raises NotFoundError if the product does not exist.
    """
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})


def check_stock(lines: Iterable) -> None:
    """
    Verify that current stock covers every product in lines.

    Quantities are aggregated per product first, so two lines of the same
    product are checked against their combined quantity.

    Raises NotFoundError for unknown products and InsufficientStockError
    listing every shortage.
    """
    requested: dict[int, int] = {}
    names: dict[int, str] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        names.setdefault(line.product_id, line.name)

    shortages = []
    for product_id, qty in requested.items():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(
                f"Product not found: {names[product_id]}",
                details={"product_id": product_id},
            )
        if product.quantity < qty:
            shortages.append({
                "product_id": product_id,
                "name": product.name,
                "requested_quantity": qty,
                "on_hand": product.quantity,
            })

    if shortages:
        first = shortages[0]
        raise InsufficientStockError(
            f"Insufficient stock: {first['name']}. "
            f"Available: {first['on_hand']}, requested: {first['requested_quantity']}",
            details={"items": shortages},
        )


def ensure_products_exist(product_ids: Iterable[int]) -> None:
    ids = set(product_ids)
    if not ids:
        return
    found = {
        row[0] for row in db.session.query(Product.id).filter(Product.id.in_(ids)).all()
    }
    missing = sorted(ids - found)
    if missing:
        raise NotFoundError(
            f"Product not found: {missing[0]}",
            details={"product_ids": missing},
        )


def apply_receipt(receipt: Receipt, *, reason: str | None = None, actor_user_id: int | None = None) -> list[StockMovement]:
    """
    Apply every line of a receipt to stock. Does not commit.

    The receipt must already be flushed (it needs an id for the movement rows).
    """
    if receipt.id is None:
        db.session.flush()

    if reason is None:
        reason = REASON_RETURN if receipt.is_return else REASON_SALE

    movements = []
    line: ReceiptLine
    for line in receipt.lines:
        delta = line_delta(receipt.is_return, line.quantity)
        increment_quantity(line.product_id, delta)
        movement = StockMovement(
            receipt_id=receipt.id,
            line_no=line.line_no,
            product_id=line.product_id,
            quantity_delta=delta,
            reason=reason,
            actor_user_id=actor_user_id,
        )
        db.session.add(movement)
        movements.append(movement)

    db.session.flush()
    logger.info(
        "Applied receipt %s to stock (%d lines, reason=%s)",
        receipt.id, len(movements), reason,
    )
    return movements


def get_stock_movements(product_id: int | None = None, receipt_id: int | None = None) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if receipt_id is not None:
        q = q.filter(StockMovement.receipt_id == receipt_id)
    return q.order_by(StockMovement.id.asc()).all()

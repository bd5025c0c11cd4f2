# Overview: Thin product record store consumed by receipts through product references.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, NotFoundError


def list_products(search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(pattern), Product.code.ilike(pattern)))
    return q.order_by(Product.name.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def create_product(patch: dict) -> Product:
    if db.session.query(Product).filter_by(code=patch["code"]).first():
        raise ConflictError(f"Product code {patch['code']!r} already exists")
    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """
    Update master data. Stock is deliberately not writable here; it only
    moves through receipts.
    """
    product = get_product(product_id)
    if "code" in patch and patch["code"] != product.code:
        if db.session.query(Product).filter_by(code=patch["code"]).first():
            raise ConflictError(f"Product code {patch['code']!r} already exists")
    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()
    return product

# Overview: Flask API routes for products; thin record store used by receipt lines.

# backend/kassa/routes/products.py
"""
Product routes.

Reads are open to every authenticated role (tills cache the catalogue for
offline selling). Writes are admin-only. Stock quantity can be set on
create; afterwards it only moves through receipts.
"""
from flask import Blueprint, request, jsonify

from ..models import Product
from ..models.auth import ROLE_ADMIN
from ..services import products_service
from ..validation import (
    KassaError,
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import require_auth, require_role

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "category", "price_cents", "cost_price_cents", "quantity", "min_stock"},
    required_on_create={"code", "name", "price_cents"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "category", "price_cents", "cost_price_cents", "min_stock"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """List products. Query: search (matches name or code)"""
    products = products_service.list_products(search=request.args.get("search"))
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except KassaError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product():
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
        product = products_service.create_product(patch)
        return jsonify({"product": product.to_dict()}), 201
    except KassaError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product(product_id: int):
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_product(patch)
        product = products_service.update_product(product_id, patch)
        return jsonify({"product": product.to_dict()}), 200
    except KassaError as e:
        return jsonify(e.to_dict()), e.status_code

# Overview: Flask API routes for customers; thin record store referenced by receipts.

from flask import Blueprint, request, jsonify

from ..extensions import db
from ..models import Customer
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER
from ..validation import KassaError, ModelValidationPolicy, validate_payload
from ..decorators import require_auth, require_role

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers():
    customers = db.session.query(Customer).order_by(Customer.name.asc()).all()
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def create_customer():
    try:
        patch = validate_payload(
            model=Customer,
            payload=request.get_json(silent=True),
            policy=CUSTOMER_POLICY,
            partial=False,
        )
    except KassaError as e:
        return jsonify(e.to_dict()), e.status_code

    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    return jsonify({"customer": customer.to_dict()}), 201

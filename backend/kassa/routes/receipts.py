# Overview: Flask API routes for receipts; sale ingestion and staff receipt review.

# backend/kassa/routes/receipts.py
"""
Receipt API Routes

DESIGN:
- POST /api/receipts: one sale made while the till is online. Preflights
  stock for admin/cashier; helper sales land pending.
- POST /api/receipts/bulk: replay of offline sales. Idempotent per
  offline_id, no stock check, per-item outcomes.
- PUT /api/receipts/<id>/approve|reject|lines: staff receipt review.

All error bodies have the shape {"error": code, "message": text, "details": {}}.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_HELPER
from ..services import ingestion_service, receipt_service, staff_receipt_service
from ..services.ingestion_service import OUTCOME_ALREADY_SYNCED
from ..validation import KassaError, ValidationError
from ..decorators import require_auth, require_role


receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


def _error(exc: KassaError):
    return jsonify(exc.to_dict()), exc.status_code


# =============================================================================
# INGESTION
# =============================================================================

@receipts_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER, ROLE_HELPER)
def create_receipt_route():
    """
    Record one online sale.

    Request body:
    {
        "offline_id": "9f1c...",   (optional idempotency key)
        "line_items": [{"product_id": 1, "name": "Tea", "unit_price_cents": 250, "quantity": 2}],
        "payment_method": "cash" | "card",
        "is_return": false,
        "customer_id": null
    }

    Returns:
        201: {"status": "synced", "receipt": {...}}
        200: {"status": "already_synced", "receipt": {...}}
        400/404/409: error body
    """
    try:
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("JSON body required")

        outcome = ingestion_service.ingest_online(data, g.current_user)
        status_code = 200 if outcome.status == OUTCOME_ALREADY_SYNCED else 201
        return jsonify({"status": outcome.status, "receipt": outcome.receipt.to_dict()}), status_code

    except KassaError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create receipt")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.post("/bulk")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER, ROLE_HELPER)
def bulk_sync_route():
    """
    Replay sales recorded while the till was offline.

    Request body: {"sales": [<sale with required offline_id>, ...]}

    Returns 200 with a results array parallel to sales, each entry
    {"offline_id", "status": "synced" | "already_synced" | "error", ...}.
    A failing item never prevents its siblings from being stored.
    """
    try:
        data = request.get_json(silent=True) or {}
        sales = data.get("sales")

        max_sales = current_app.config.get("MAX_BULK_SALES", 200)
        if isinstance(sales, list) and len(sales) > max_sales:
            raise ValidationError(f"At most {max_sales} sales per request")

        outcomes = ingestion_service.ingest_bulk(sales, g.current_user)
        summary = ingestion_service.summarize(outcomes)
        current_app.logger.info(
            "Bulk sync by %s: %d synced, %d failed",
            g.current_user.username, summary["synced"], summary["failed"],
        )
        return jsonify(summary), 200

    except KassaError as e:
        body = e.to_dict()
        body["success"] = False
        return jsonify(body), e.status_code
    except Exception:
        current_app.logger.exception("Failed to sync offline sales")
        return jsonify({"success": False, "error": "Internal server error"}), 500


# =============================================================================
# LISTING
# =============================================================================

@receipts_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def list_receipts_route():
    """List receipts newest first. Query: status=all|completed|pending|approved|rejected"""
    try:
        receipts = receipt_service.list_receipts(
            status=request.args.get("status"),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"receipts": [r.to_dict() for r in receipts]}), 200
    except KassaError as e:
        return _error(e)


@receipts_bp.get("/staff")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def list_staff_receipts_route():
    """List helper receipts (pending, approved, rejected). Query: status"""
    receipts = staff_receipt_service.list_staff_receipts(status=request.args.get("status"))
    return jsonify({
        "receipts": [r.to_dict() for r in receipts],
        "pending_count": staff_receipt_service.count_pending(),
    }), 200


@receipts_bp.get("/mine")
@require_auth
def list_my_receipts_route():
    """Receipts created by the caller (helpers follow their submissions here)."""
    receipts = receipt_service.list_receipts(created_by_user_id=g.current_user.id)
    return jsonify({"receipts": [r.to_dict() for r in receipts]}), 200


@receipts_bp.get("/<int:receipt_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def get_receipt_route(receipt_id: int):
    try:
        receipt = receipt_service.get_receipt(receipt_id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except KassaError as e:
        return _error(e)


# =============================================================================
# STAFF RECEIPT REVIEW
# =============================================================================

@receipts_bp.put("/<int:receipt_id>/approve")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def approve_receipt_route(receipt_id: int):
    """
    Approve a pending staff receipt and deduct its stock.

    Returns:
        200: updated receipt
        404: not_found
        409: already_processed | insufficient_stock (receipt stays pending)
    """
    try:
        receipt = staff_receipt_service.approve(receipt_id, g.current_user.id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except KassaError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to approve receipt %s", receipt_id)
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.put("/<int:receipt_id>/reject")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def reject_receipt_route(receipt_id: int):
    """Reject a pending staff receipt. No stock effect."""
    try:
        receipt = staff_receipt_service.reject(receipt_id, g.current_user.id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except KassaError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to reject receipt %s", receipt_id)
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.put("/<int:receipt_id>/lines")
@require_auth
@require_role(ROLE_ADMIN, ROLE_CASHIER)
def update_receipt_lines_route(receipt_id: int):
    """
    Replace the line items of a pending staff receipt.

    Request body: {"line_items": [...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        receipt = staff_receipt_service.update_lines(receipt_id, data.get("line_items"), g.current_user.id)
        return jsonify({"receipt": receipt.to_dict()}), 200
    except KassaError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to edit receipt %s", receipt_id)
        return jsonify({"error": "Internal server error"}), 500

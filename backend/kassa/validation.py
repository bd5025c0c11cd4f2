from __future__ import annotations
from datetime import datetime
from kassa.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models.receipts import PAYMENT_METHODS


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Maximum units of one product on a single line
MAX_LINE_QUANTITY = 100_000

MAX_OFFLINE_ID_LENGTH = 64

# Largest value an INTEGER column holds (signed 64-bit)
MAX_DB_INT = 2**63 - 1


class KassaError(Exception):
    """Base for errors that map onto an API error body."""
    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(KassaError):
    """400-level input problem (malformed submission)."""
    code = "validation_error"
    status_code = 400


class NotFoundError(KassaError):
    """Referenced product, customer or receipt does not exist."""
    code = "not_found"
    status_code = 404


class InsufficientStockError(KassaError):
    """Stock on hand does not cover the requested quantities."""
    code = "insufficient_stock"
    status_code = 409


class AlreadyProcessedError(KassaError):
    """Staff receipt has already left the pending state."""
    code = "already_processed"
    status_code = 409


class ConflictError(KassaError):
    """409-level business rule conflict (e.g., duplicate product code)."""
    code = "conflict"
    status_code = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _strict_int(name: str, value: Any) -> int:
    # bool is an int subclass; reject it along with floats and "1e3"/"12.5" strings
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            number = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    else:
        raise ValidationError(f"{name} must be an integer")
    if not -MAX_DB_INT - 1 <= number <= MAX_DB_INT:
        raise ValidationError(f"{name} is out of range")
    return number


def _strict_id(name: str, value: Any) -> int:
    number = _strict_int(name, value)
    if number < 1:
        raise ValidationError(f"{name} must be a positive id")
    return number


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _strict_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against column metadata and a
    writable-field allowlist. Returns a cleaned patch dict.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules for product writes not captured by column metadata."""
    for key in ("price_cents", "cost_price_cents"):
        if patch.get(key) is None:
            continue
        if patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
        if patch[key] > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    if patch.get("quantity") is not None and patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")


# =============================================================================
# SALE SUBMISSIONS
# =============================================================================


@dataclass(frozen=True)
class LineInput:
    product_id: int
    name: str
    unit_price_cents: int
    quantity: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class SaleSubmission:
    """A validated sale as submitted by a till, before it becomes a Receipt."""
    offline_id: str | None
    lines: tuple[LineInput, ...]
    payment_method: str
    is_return: bool
    customer_id: int | None
    created_at: datetime | None

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)


def parse_line_items(raw_lines: Any) -> tuple[LineInput, ...]:
    """
    Validate the line item array of a submission.

    Each line needs product_id, name, unit_price_cents and quantity >= 1.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("line_items must be a non-empty list")

    lines = []
    for index, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"line {index} must be an object")

        missing = [k for k in ("product_id", "name", "unit_price_cents", "quantity") if raw.get(k) is None]
        if missing:
            raise ValidationError(
                f"line {index} missing required fields: {', '.join(missing)}",
                details={"line": index, "missing": missing},
            )

        product_id = _strict_id(f"line {index} product_id", raw["product_id"])
        unit_price_cents = _strict_int(f"line {index} unit_price_cents", raw["unit_price_cents"])
        quantity = _strict_int(f"line {index} quantity", raw["quantity"])
        name = str(raw["name"]).strip()

        if not name:
            raise ValidationError(f"line {index} name cannot be blank")
        if unit_price_cents < 0 or unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"line {index} unit_price_cents out of range")
        if quantity < 1:
            raise ValidationError(f"line {index} quantity must be >= 1")
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"line {index} quantity cannot exceed {MAX_LINE_QUANTITY}")

        lines.append(LineInput(
            product_id=product_id,
            name=name,
            unit_price_cents=unit_price_cents,
            quantity=quantity,
        ))

    return tuple(lines)


def parse_sale_submission(data: Any, *, require_offline_id: bool) -> SaleSubmission:
    """
    Validate one sale submission. Client-supplied totals are ignored; the
    total is always recomputed from line items.
    """
    if not isinstance(data, dict):
        raise ValidationError("sale must be an object")

    offline_id = data.get("offline_id")
    if offline_id is not None:
        offline_id = str(offline_id).strip() or None
    if offline_id is None and require_offline_id:
        raise ValidationError("offline_id is required")
    if offline_id is not None and len(offline_id) > MAX_OFFLINE_ID_LENGTH:
        raise ValidationError(f"offline_id exceeds max length {MAX_OFFLINE_ID_LENGTH}")

    lines = parse_line_items(data.get("line_items"))

    payment_method = data.get("payment_method") or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    is_return = data.get("is_return", False)
    if not isinstance(is_return, bool):
        raise ValidationError("is_return must be a boolean")

    customer_id = data.get("customer_id")
    if customer_id is not None:
        customer_id = _strict_id("customer_id", customer_id)

    created_at = None
    if data.get("created_at"):
        try:
            created_at = parse_iso_datetime(str(data["created_at"]))
        except ValueError:
            raise ValidationError("created_at must be an ISO-8601 datetime")

    return SaleSubmission(
        offline_id=offline_id,
        lines=lines,
        payment_method=payment_method,
        is_return=is_return,
        customer_id=customer_id,
        created_at=created_at,
    )

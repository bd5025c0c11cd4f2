# Overview: Till-side value types for sales waiting to reach the server.

"""
Sale records held by the till.

A SaleDraft is what the checkout hands to the journal; a SaleRecord is the
draft plus everything the journal stamps on it (local_id, created_at, sync
bookkeeping). to_payload() renders the shape the bulk ingestion endpoint
accepts, with local_id travelling as offline_id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from ..time_utils import to_utc_z

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD)


@dataclass(frozen=True)
class LineItem:
    product_id: int
    name: str
    unit_price_cents: int
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1 (got {self.quantity} for {self.name!r})")
        if self.unit_price_cents < 0:
            raise ValueError(f"unit_price_cents cannot be negative for {self.name!r}")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            product_id=int(data["product_id"]),
            name=str(data["name"]),
            unit_price_cents=int(data["unit_price_cents"]),
            quantity=int(data["quantity"]),
        )


@dataclass(frozen=True)
class WalkInSale:
    """Anonymous buyer."""

    @property
    def customer_id(self) -> None:
        return None


@dataclass(frozen=True)
class CustomerSale:
    """Sale booked against a known customer."""
    customer_id: int


SaleParty = Union[CustomerSale, WalkInSale]

WALK_IN = WalkInSale()


def party_for(customer_id: int | None) -> SaleParty:
    return WALK_IN if customer_id is None else CustomerSale(customer_id)


@dataclass(frozen=True)
class SaleDraft:
    """A completed checkout before the journal has stamped it."""
    line_items: tuple[LineItem, ...]
    payment_method: str = PAYMENT_CASH
    is_return: bool = False
    party: SaleParty = WALK_IN

    def __post_init__(self):
        if not self.line_items:
            raise ValueError("a sale needs at least one line item")
        if self.payment_method not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        # Any sequence is accepted; stored as a tuple.
        object.__setattr__(self, "line_items", tuple(self.line_items))

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.line_items)


@dataclass(frozen=True)
class SaleRecord:
    local_id: str
    line_items: tuple[LineItem, ...]
    payment_method: str
    is_return: bool
    party: SaleParty
    created_at: datetime
    sync_status: str = SYNC_PENDING
    attempts: int = 0
    last_error: str | None = None
    last_attempt_at: datetime | None = field(default=None, compare=False)

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.line_items)

    @property
    def customer_id(self) -> int | None:
        return self.party.customer_id

    def to_payload(self) -> dict:
        """Body of one entry in POST /api/receipts/bulk."""
        return {
            "offline_id": self.local_id,
            "line_items": [line.to_dict() for line in self.line_items],
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "is_return": self.is_return,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
        }

# Overview: Till checkout facade; cart handling and journal-first sale completion.

"""
Checkout always writes the journal first and returns as soon as that write
commits. Sync is only requested, never awaited: a network problem can
delay a sale reaching the server but never fail the checkout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .connectivity import ConnectivityMonitor
from .journal import ParkedCart, SaleJournal
from .records import LineItem, SaleDraft, PAYMENT_CASH, party_for

logger = logging.getLogger(__name__)

NOTICE_SYNCING = "Sale saved, syncing with server"
NOTICE_OFFLINE = "Sale saved, will sync later"


class Cart:
    """Lines of the sale currently being rung up."""

    def __init__(self, lines=None):
        self._lines: list[LineItem] = list(lines or [])

    @property
    def lines(self) -> tuple[LineItem, ...]:
        return tuple(self._lines)

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self._lines)

    def is_empty(self) -> bool:
        return not self._lines

    def add(self, product_id: int, name: str, unit_price_cents: int, quantity: int = 1) -> None:
        """Add a product; a product already in the cart gets its quantity raised."""
        for index, line in enumerate(self._lines):
            if line.product_id == product_id:
                self._lines[index] = LineItem(product_id, line.name, line.unit_price_cents, line.quantity + quantity)
                return
        self._lines.append(LineItem(product_id, name, unit_price_cents, quantity))

    def set_quantity(self, product_id: int, quantity: int) -> None:
        if quantity < 1:
            raise ValueError("quantity must be >= 1; remove the line instead")
        self._lines = [
            LineItem(line.product_id, line.name, line.unit_price_cents, quantity)
            if line.product_id == product_id else line
            for line in self._lines
        ]

    def remove(self, product_id: int) -> None:
        self._lines = [line for line in self._lines if line.product_id != product_id]

    def clear(self) -> None:
        self._lines = []


@dataclass(frozen=True)
class CheckoutResult:
    local_id: str
    total_cents: int
    is_return: bool
    notice: str


class Till:
    def __init__(self, journal: SaleJournal, monitor: Optional[ConnectivityMonitor] = None):
        self.journal = journal
        self.monitor = monitor
        self.cart = Cart()

    def checkout(
        self,
        payment_method: str = PAYMENT_CASH,
        is_return: bool = False,
        customer_id: int | None = None,
    ) -> CheckoutResult:
        """
        Complete the current cart.

        StorageError from the journal propagates and the cart is kept, so
        the cashier can retry. On success the cart is cleared.
        """
        draft = SaleDraft(
            line_items=self.cart.lines,
            payment_method=payment_method,
            is_return=is_return,
            party=party_for(customer_id),
        )
        local_id = self.journal.append(draft)
        self.cart.clear()

        notice = NOTICE_OFFLINE
        if self.monitor is not None:
            self.monitor.trigger_sync()
            if self.monitor.is_online:
                notice = NOTICE_SYNCING

        logger.info("Checkout %s complete (%s)", local_id, "return" if is_return else "sale")
        return CheckoutResult(local_id=local_id, total_cents=draft.total_cents, is_return=is_return, notice=notice)

    def retry_sync(self) -> bool:
        if self.monitor is None:
            return False
        return self.monitor.trigger_sync()

    # ------------------------------------------------------------------
    # Parked carts
    # ------------------------------------------------------------------

    def park(self, label: str | None = None) -> int:
        cart_id = self.journal.park_cart(self.cart.lines, label=label)
        self.cart.clear()
        return cart_id

    def parked(self) -> list[ParkedCart]:
        return self.journal.list_parked()

    def resume(self, cart_id: int) -> bool:
        """Load a parked cart into the till, replacing the current cart."""
        parked = self.journal.resume_cart(cart_id)
        if parked is None:
            return False
        self.cart = Cart(parked.line_items)
        return True

    def discard(self, cart_id: int) -> bool:
        return self.journal.discard_cart(cart_id)

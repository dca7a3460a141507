"""Order data models and the payment-status transition table.

Invariants:
- payment_status only moves along ALLOWED_TRANSITIONS
- Re-applying the current status is a no-op, never a transition
- An event whose status the order has already moved past is stale, not
  a conflict
- Terminal states (delivered, refunded, cancelled) have no outgoing edges
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PaymentStatus(str, Enum):
    """Order payment / fulfilment lifecycle states."""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    FAILED = "failed"     # Payment attempt failed; customer may retry


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.AUTHORIZED,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.AUTHORIZED: frozenset({
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.FAILED: frozenset({
        PaymentStatus.AUTHORIZED,
        PaymentStatus.PAID,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PAID: frozenset({
        PaymentStatus.SHIPPED,
        PaymentStatus.REFUNDED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.SHIPPED: frozenset({PaymentStatus.DELIVERED}),
    PaymentStatus.DELIVERED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Return True if ``current -> target`` is an allowed edge."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def can_reach(start: PaymentStatus, goal: PaymentStatus) -> bool:
    """Return True if ``goal`` lies on some path of allowed edges from ``start``."""
    seen = {start}
    frontier = [start]
    while frontier:
        for nxt in ALLOWED_TRANSITIONS.get(frontier.pop(), frozenset()):
            if nxt == goal:
                return True
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return False


@dataclass
class Customer:
    """Billing/shipping contact for an order."""
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""


@dataclass
class OrderItem:
    """A line item as sold."""
    name: str
    quantity: int
    price: float
    sku: str = ""


@dataclass
class Order:
    """An order record as held by the order store.

    ``id`` is the internal identifier; ``gateway_order_id`` is the payment
    gateway's reference and is what webhooks carry.
    """
    id: str
    order_number: str = ""
    gateway_order_id: str = ""
    gateway_payment_id: str = ""
    payment_status: PaymentStatus = PaymentStatus.PENDING
    customer: Customer = field(default_factory=Customer)
    items: list[OrderItem] = field(default_factory=list)
    awb_code: str = ""
    payment_error: str = ""
    refund_id: str = ""
    refund_amount: float = 0.0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def sub_total(self) -> float:
        return sum(item.price * item.quantity for item in self.items)


@dataclass
class OrderEvent:
    """Audit row written once per applied status transition."""
    order_id: str
    from_status: PaymentStatus
    to_status: PaymentStatus
    source: str        # e.g. "webhook:payment.captured", "shipment"
    reference: str = ""  # gateway payment/refund id, AWB code
    created_at: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

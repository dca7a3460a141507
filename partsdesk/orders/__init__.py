"""Orders: models, persistence, and payment-event sync."""

from partsdesk.orders.models import Order, OrderEvent, PaymentStatus
from partsdesk.orders.store import InMemoryOrderStore, OrderStore, PostgresOrderStore
from partsdesk.orders.sync import OrderSync, SyncOutcome

__all__ = [
    "InMemoryOrderStore",
    "Order",
    "OrderEvent",
    "OrderStore",
    "OrderSync",
    "PaymentStatus",
    "PostgresOrderStore",
    "SyncOutcome",
]

"""Error taxonomy for the shipping and payment-sync paths.

None of these are retried internally. Shipping errors surface to the HTTP
caller; sync errors map to webhook response codes so the gateway's own
redelivery decides whether to try again.
"""

from __future__ import annotations

from typing import Any


class PartsdeskError(Exception):
    """Base exception for partsdesk errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ── Shipping ──────────────────────────────────────────────────────────────


class UpstreamAuthError(PartsdeskError):
    """Credential exchange with the shipping aggregator failed."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class ShippingProviderError(PartsdeskError):
    """Shipping API returned a non-2xx response (or was unreachable).

    ``body`` is the provider's error body, verbatim (parsed JSON when the
    response was JSON, raw text otherwise). ``status_code`` is 0 for
    transport failures.
    """

    def __init__(self, status_code: int, body: Any) -> None:
        super().__init__(f"Shipping provider error (HTTP {status_code})")
        self.status_code = status_code
        self.body = body


# ── Webhooks ──────────────────────────────────────────────────────────────


class InvalidSignature(PartsdeskError):
    """Webhook signature missing or wrong."""

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(message)


# ── Order sync ────────────────────────────────────────────────────────────


class SyncError(PartsdeskError):
    """Base exception for order synchronisation failures."""


class OrderNotFound(SyncError):
    """Webhook references an order this store does not know."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Order not found: {reference}")
        self.reference = reference


class InvalidTransition(SyncError):
    """Requested status change is not in the transition table."""

    def __init__(self, order_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Order {order_id}: transition {current} -> {target} not allowed"
        )
        self.order_id = order_id
        self.current = current
        self.target = target


class ShipmentInProgress(SyncError):
    """Another request is already creating the carrier order."""

    def __init__(self, order_number: str) -> None:
        super().__init__(f"Shipment already in progress for order {order_number}")
        self.order_number = order_number


class MalformedEvent(SyncError):
    """Event payload lacks the fields needed to locate or update an order."""


class PersistenceError(SyncError):
    """The order store failed to read or write."""

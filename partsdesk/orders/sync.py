"""Order sync: applies verified payment-gateway events to order records.

Security contract:
- Callers must verify the webhook signature before handing events here
- Orders are never created from a webhook (unknown reference -> OrderNotFound)
- Status only moves along ALLOWED_TRANSITIONS
- Late events for a status the order already passed are acknowledged as
  STALE; events that would contradict the order raise InvalidTransition
- Re-applying the current status is a no-op: no write, no audit row
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from partsdesk.errors import (
    InvalidTransition,
    MalformedEvent,
    OrderNotFound,
    PersistenceError,
)
from partsdesk.orders.models import (
    Order,
    OrderEvent,
    PaymentStatus,
    can_reach,
    can_transition,
)

if TYPE_CHECKING:
    from partsdesk.orders.store import OrderStore
    from partsdesk.webhooks.dispatcher import WebhookEvent

logger = logging.getLogger(__name__)

# Compare-and-set attempts before giving up on a hot row
_MAX_CAS_ATTEMPTS = 3


class SyncOutcome(str, Enum):
    """What an event did to its order."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"  # Order already in target status (replay)
    IGNORED = "ignored"      # Event type we don't sync
    STALE = "stale"          # Order already moved past the event's status


def _entity(payload: dict[str, Any], key: str) -> dict[str, Any] | None:
    """Pull ``payload[key]``, unwrapping the gateway's ``{"entity": {...}}`` envelope."""
    value = payload.get(key)
    if not isinstance(value, dict):
        return None
    inner = value.get("entity")
    if isinstance(inner, dict):
        return inner
    return value


class OrderSync:
    """Applies payment events to orders held in an OrderStore."""

    def __init__(self, store: OrderStore, clock: Callable[[], float] | None = None):
        self._store = store
        self._clock = clock
        self._handlers: dict[str, Callable[[WebhookEvent], SyncOutcome]] = {
            "payment.authorized": self.apply_payment_authorized,
            "payment.captured": self.apply_payment_captured,
            "payment.failed": self.apply_payment_failed,
            "refund.created": self.apply_refund_created,
        }

    @property
    def supported_events(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def apply_event(self, event: WebhookEvent) -> SyncOutcome:
        """Route an event to its handler. Unknown event types are ignored."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Ignoring unsupported payment event: %s", event.type)
            return SyncOutcome.IGNORED
        return handler(event)

    # ── Event handlers ────────────────────────────────────────────────────

    def apply_payment_captured(self, event: WebhookEvent) -> SyncOutcome:
        """Mark the referenced order paid and record the payment id."""
        payment = self._require_payment(event)
        payment_id = str(payment.get("id") or "")
        if not payment_id:
            raise MalformedEvent("payment.captured event has no payment id")

        order = self._locate(payment)
        if order.payment_status == PaymentStatus.PAID and order.gateway_payment_id not in ("", payment_id):
            logger.warning(
                "Order %s already paid by %s; ignoring capture of %s",
                order.id, order.gateway_payment_id, payment_id,
            )
        return self._apply(
            order,
            PaymentStatus.PAID,
            {"gateway_payment_id": payment_id},
            source=f"webhook:{event.type}",
            reference=payment_id,
        )

    def apply_payment_authorized(self, event: WebhookEvent) -> SyncOutcome:
        payment = self._require_payment(event)
        payment_id = str(payment.get("id") or "")
        order = self._locate(payment)
        return self._apply(
            order,
            PaymentStatus.AUTHORIZED,
            {"gateway_payment_id": payment_id} if payment_id else {},
            source=f"webhook:{event.type}",
            reference=payment_id,
        )

    def apply_payment_failed(self, event: WebhookEvent) -> SyncOutcome:
        payment = self._require_payment(event)
        order = self._locate(payment)
        error = (
            payment.get("error_description")
            or payment.get("error_code")
            or "payment failed"
        )
        return self._apply(
            order,
            PaymentStatus.FAILED,
            {"payment_error": str(error)},
            source=f"webhook:{event.type}",
            reference=str(payment.get("id") or ""),
        )

    def apply_refund_created(self, event: WebhookEvent) -> SyncOutcome:
        """Mark the order refunded. Refund amounts arrive in paise."""
        refund = _entity(event.payload, "refund")
        if refund is None or not refund.get("id"):
            raise MalformedEvent("refund.created event has no refund entity")

        payment = _entity(event.payload, "payment")
        if payment is not None:
            order = self._locate(payment)
        else:
            order = self._locate_by_payment_id(str(refund.get("payment_id") or ""))
        try:
            amount = int(refund.get("amount") or 0) / 100
        except (TypeError, ValueError) as e:
            raise MalformedEvent(f"Refund amount not numeric: {refund.get('amount')!r}") from e

        return self._apply(
            order,
            PaymentStatus.REFUNDED,
            {"refund_id": str(refund["id"]), "refund_amount": amount},
            source=f"webhook:{event.type}",
            reference=str(refund["id"]),
        )

    # ── Shared machinery ──────────────────────────────────────────────────

    def mark_shipped(self, order: Order, awb_code: str) -> SyncOutcome:
        """Record a carrier shipment against a paid order."""
        return self._apply(
            order,
            PaymentStatus.SHIPPED,
            {"awb_code": awb_code},
            source="shipment",
            reference=awb_code,
        )

    @staticmethod
    def _require_payment(event: WebhookEvent) -> dict[str, Any]:
        payment = _entity(event.payload, "payment")
        if payment is None:
            raise MalformedEvent(f"{event.type} event has no payment entity")
        return payment

    def _locate(self, payment: dict[str, Any]) -> Order:
        """Find the order a payment belongs to.

        Gateway order id first; the internal id stashed in payment notes
        at checkout is the fallback. Checkout writes it as
        ``supabase_order_id``; plain ``order_id`` is also accepted.
        """
        gateway_order_id = str(payment.get("order_id") or "")
        notes = payment.get("notes") if isinstance(payment.get("notes"), dict) else {}
        internal_id = str(notes.get("supabase_order_id") or notes.get("order_id") or "")

        if not gateway_order_id and not internal_id:
            raise MalformedEvent("Payment carries no order reference")

        order = None
        if gateway_order_id:
            order = self._store.get_by_gateway_order_id(gateway_order_id)
        if order is None and internal_id:
            order = self._store.get(internal_id)
        if order is None:
            reference = gateway_order_id or internal_id
            logger.warning("Payment event for unknown order: %s", reference)
            raise OrderNotFound(reference)
        return order

    def _locate_by_payment_id(self, payment_id: str) -> Order:
        """Find the order a captured payment was recorded against."""
        if not payment_id:
            raise MalformedEvent("Refund carries no payment reference")
        order = self._store.get_by_gateway_payment_id(payment_id)
        if order is None:
            logger.warning("Refund for unknown payment: %s", payment_id)
            raise OrderNotFound(payment_id)
        return order

    def _apply(
        self,
        order: Order,
        target: PaymentStatus,
        changes: dict[str, Any],
        *,
        source: str,
        reference: str = "",
    ) -> SyncOutcome:
        for _ in range(_MAX_CAS_ATTEMPTS):
            current = order.payment_status
            if current == target:
                logger.info("Order %s already %s, no-op", order.id, target.value)
                return SyncOutcome.UNCHANGED
            if not can_transition(current, target):
                if can_reach(target, current):
                    logger.info(
                        "Stale %s for order %s: already %s (%s)",
                        target.value, order.id, current.value, source,
                    )
                    return SyncOutcome.STALE
                logger.warning(
                    "Rejected transition for order %s: %s -> %s (%s)",
                    order.id, current.value, target.value, source,
                )
                raise InvalidTransition(order.id, current.value, target.value)

            now = self._clock() if self._clock is not None else time.time()
            audit = OrderEvent(
                order_id=order.id,
                from_status=current,
                to_status=target,
                source=source,
                reference=reference,
                created_at=now,
            )
            applied = self._store.transition(
                order.id,
                current,
                {**changes, "payment_status": target, "updated_at": now},
                audit,
            )
            if applied:
                logger.info(
                    "Order %s: %s -> %s (%s %s)",
                    order.id, current.value, target.value, source, reference,
                )
                return SyncOutcome.APPLIED

            # Row moved underneath us; re-evaluate against the fresh status
            fresh = self._store.get(order.id)
            if fresh is None:
                raise OrderNotFound(order.id)
            order = fresh

        raise PersistenceError(f"Order {order.id}: too many concurrent updates")

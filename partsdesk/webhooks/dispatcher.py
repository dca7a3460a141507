"""Webhook event parsing and dispatch into order sync.

The gateway posts ``{"event": "<type>", "payload": {...}}``. Parsing only
checks the envelope; payload fields are validated by the sync handler that
needs them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from partsdesk.errors import MalformedEvent
from partsdesk.orders.sync import OrderSync, SyncOutcome

logger = logging.getLogger(__name__)


@dataclass
class WebhookEvent:
    """Normalized payment-gateway event. Transient, never persisted."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = ""


def parse_event(body: Any, event_id: str = "") -> WebhookEvent:
    """Parse a decoded webhook body into a WebhookEvent.

    Raises:
        MalformedEvent: body is not an object, or lacks ``event``/``payload``
    """
    if not isinstance(body, dict):
        raise MalformedEvent("Webhook body is not a JSON object")

    event_type = body.get("event")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEvent("Webhook body has no event type")

    payload = body.get("payload", {})
    if not isinstance(payload, dict):
        raise MalformedEvent("Webhook payload is not a JSON object")

    return WebhookEvent(type=event_type, payload=payload, event_id=event_id or str(body.get("id") or ""))


def dispatch_event(event: WebhookEvent, sync: OrderSync) -> SyncOutcome:
    """Apply a verified event to its order."""
    logger.info("Dispatching payment event: %s (id=%s)", event.type, event.event_id or "-")
    return sync.apply_event(event)

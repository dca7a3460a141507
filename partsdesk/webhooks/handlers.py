"""Webhook HTTP handlers: FastAPI route handlers for payment-gateway webhooks.

Each request:
1. Reads raw body (needed for HMAC verification)
2. Verifies the signature (fail-closed, 400 on mismatch, nothing mutated)
3. Parses the event envelope
4. Checks idempotency off the event loop (duplicate event ids short-circuit with 200)
5. Applies the event to its order; late events the order already passed
   are acknowledged with 200

Security contract:
- Never return error details to the webhook caller (info disclosure)
- 200 for unsupported event types (don't leak the event support map)
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from partsdesk.errors import (
    InvalidSignature,
    InvalidTransition,
    MalformedEvent,
    OrderNotFound,
    PersistenceError,
)
from partsdesk.webhooks.dispatcher import dispatch_event, parse_event
from partsdesk.webhooks.verification import verify

logger = logging.getLogger(__name__)

PROVIDER = "razorpay"

# Checked in order; the first header present wins
SIGNATURE_HEADERS = ("x-razorpay-signature", "x-signature")
EVENT_ID_HEADER = "x-razorpay-event-id"


def _log_webhook(event_type: str, event_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info(
        "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s",
        PROVIDER,
        event_type,
        event_id or "-",
        status,
    )


def _require_signature(body: bytes, headers: dict[str, str], secret: str) -> None:
    signature = next((headers[h] for h in SIGNATURE_HEADERS if h in headers), None)
    if not verify(body, signature, secret):
        raise InvalidSignature()


async def _handle_webhook(request: Request) -> JSONResponse:
    """Verify, parse, dedup and apply one payment-gateway webhook."""
    start = time.time()
    services = request.app.state.services

    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    # 1. Verify signature
    try:
        _require_signature(body, headers, services.settings.razorpay_webhook_secret)
    except InvalidSignature:
        _log_webhook("unknown", "", "signature_failed")
        return JSONResponse({"error": "Invalid signature"}, status_code=400)

    # 2. Parse envelope
    try:
        event = parse_event(json.loads(body), headers.get(EVENT_ID_HEADER, ""))
    except (json.JSONDecodeError, UnicodeDecodeError, MalformedEvent):
        _log_webhook("unknown", "", "invalid_payload")
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    # 3. Idempotency
    dedup = services.deduplicator
    if await run_in_threadpool(dedup.is_duplicate, PROVIDER, event.event_id):
        _log_webhook(event.type, event.event_id, "duplicate")
        return JSONResponse({"success": True})

    # 4. Apply
    try:
        outcome = await run_in_threadpool(dispatch_event, event, services.order_sync)
    except OrderNotFound:
        await run_in_threadpool(dedup.release, PROVIDER, event.event_id)
        _log_webhook(event.type, event.event_id, "order_not_found")
        return JSONResponse({"error": "Order not found"}, status_code=404)
    except InvalidTransition:
        await run_in_threadpool(dedup.release, PROVIDER, event.event_id)
        _log_webhook(event.type, event.event_id, "conflicting_transition")
        return JSONResponse({"error": "Event conflicts with order state"}, status_code=409)
    except MalformedEvent:
        await run_in_threadpool(dedup.release, PROVIDER, event.event_id)
        _log_webhook(event.type, event.event_id, "invalid_payload")
        return JSONResponse({"error": "Invalid payload"}, status_code=400)
    except PersistenceError:
        await run_in_threadpool(dedup.release, PROVIDER, event.event_id)
        logger.exception("Order persistence failed for webhook %s", event.type)
        _log_webhook(event.type, event.event_id, "persistence_failed")
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)
    except Exception:
        await run_in_threadpool(dedup.release, PROVIDER, event.event_id)
        logger.exception("Unexpected failure handling webhook %s", event.type)
        _log_webhook(event.type, event.event_id, "failed")
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    _log_webhook(event.type, event.event_id, outcome.value)
    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, event.type)

    return JSONResponse({"success": True})


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    @app.post("/webhook")
    async def payment_webhook(request: Request):
        """Receive payment-gateway webhooks (signature-verified)."""
        return await _handle_webhook(request)

    @app.post("/api/razorpay/webhook")
    async def razorpay_webhook(request: Request):
        """Storefront-compatible path for the same webhook."""
        return await _handle_webhook(request)

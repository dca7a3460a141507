"""Storefront API routes: checkout signature check, shipments, tracking."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from partsdesk.errors import (
    InvalidTransition,
    OrderNotFound,
    PersistenceError,
    ShipmentInProgress,
    ShippingProviderError,
    UpstreamAuthError,
)
from partsdesk.webhooks.verification import verify_payment_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["storefront"])


class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: str = ""
    razorpay_payment_id: str = ""
    razorpay_signature: str = ""


@router.post("/payments/verify")
def verify_payment(body: PaymentVerifyRequest, request: Request):
    """Check the signature the checkout widget hands back after payment."""
    if not (body.razorpay_order_id and body.razorpay_payment_id and body.razorpay_signature):
        return JSONResponse(
            {"success": False, "error": "Missing required payment fields"},
            status_code=400,
        )

    secret = request.app.state.services.settings.razorpay_key_secret
    if not secret:
        logger.error("Payment key secret missing from configuration")
        return JSONResponse(
            {"success": False, "error": "Server misconfiguration"},
            status_code=500,
        )

    valid = verify_payment_signature(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        secret,
    )
    logger.info(
        "Checkout signature %s for order %s",
        "matched" if valid else "FAILED",
        body.razorpay_order_id,
    )
    return {"success": valid}


@router.post("/orders/{order_number}/shipment")
def create_shipment(order_number: str, request: Request):
    """Push a paid order to the carrier."""
    service = request.app.state.services.shipments
    try:
        shipment = service.ship_order(order_number)
    except OrderNotFound:
        return JSONResponse({"error": "Order not found"}, status_code=404)
    except ShipmentInProgress:
        return JSONResponse({"error": "Shipment already in progress"}, status_code=409)
    except InvalidTransition as e:
        return JSONResponse(
            {"error": f"Order is {e.current}, not ready to ship"},
            status_code=409,
        )
    except UpstreamAuthError:
        return JSONResponse(
            {"error": "Shipping provider authentication failed"},
            status_code=502,
        )
    except ShippingProviderError as e:
        return JSONResponse(
            {"error": "Failed to create shipment", "details": e.body},
            status_code=502,
        )
    except PersistenceError:
        logger.exception("Shipment created but order %s not updated", order_number)
        return JSONResponse({"error": "Failed to record shipment"}, status_code=500)
    return {"success": True, "data": shipment.model_dump()}


@router.get("/track/{awb_code}")
def track_shipment(awb_code: str, request: Request):
    """Proxy carrier tracking for an AWB code."""
    client = request.app.state.services.shipping_client
    try:
        return client.track_shipment(awb_code)
    except UpstreamAuthError:
        return JSONResponse(
            {"error": "Shipping provider authentication failed"},
            status_code=502,
        )
    except ShippingProviderError as e:
        status = 400 if e.status_code == 400 else 502
        return JSONResponse(
            {"error": "Tracking lookup failed", "details": e.body},
            status_code=status,
        )


health_router = APIRouter(tags=["health"])


@health_router.get("/health")
def health():
    return {"status": "ok"}

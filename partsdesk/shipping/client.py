"""Shipping aggregator REST client.

Wraps the two carrier calls the storefront makes: adhoc order creation and
AWB tracking. Every call authenticates through the shared TokenCache.
Non-2xx responses raise ShippingProviderError carrying the provider body
verbatim. There is no retry here; the HTTP layer decides what to surface.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from partsdesk.errors import ShippingProviderError
from partsdesk.orders.models import Order
from partsdesk.shipping.models import Shipment, build_shipping_payload
from partsdesk.shipping.token_cache import TokenCache

logger = logging.getLogger(__name__)

CREATE_ORDER_PATH = "/orders/create/adhoc"
TRACK_AWB_PATH = "/courier/track/awb/{code}"


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ShippingClient:
    """Authenticated client for the shipping aggregator."""

    def __init__(self, http: httpx.Client, base_url: str, tokens: TokenCache):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._tokens = tokens

    def _request(self, method: str, path: str, json: dict | None = None) -> Any:
        token = self._tokens.get_token()
        url = f"{self._base_url}{path}"
        try:
            response = self._http.request(
                method,
                url,
                json=json,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error("Shipping API transport error on %s %s: %s", method, path, type(e).__name__)
            raise ShippingProviderError(0, str(e)) from e

        if response.status_code == 401:
            # Token revoked upstream; make the next caller log in again
            self._tokens.invalidate()

        if not response.is_success:
            body = _response_body(response)
            logger.error(
                "Shipping API error on %s %s: HTTP %d %s",
                method, path, response.status_code, body,
            )
            raise ShippingProviderError(response.status_code, body)

        return _response_body(response)

    def create_shipment(self, order: Order) -> Shipment:
        """Create an adhoc carrier order for ``order``."""
        payload = build_shipping_payload(order)
        data = self._request("POST", CREATE_ORDER_PATH, json=payload.model_dump())
        if not isinstance(data, dict) or data.get("order_id") in (None, ""):
            raise ShippingProviderError(502, data)

        shipment = Shipment(
            carrier_order_id=str(data["order_id"]),
            shipment_id=str(data.get("shipment_id") or ""),
            status=str(data.get("status") or ""),
            awb_code=str(data.get("awb_code") or ""),
        )
        logger.info(
            "Shipment created for order %s: carrier_order=%s shipment=%s",
            payload.order_id, shipment.carrier_order_id, shipment.shipment_id,
        )
        return shipment

    def track_shipment(self, awb_code: str) -> dict[str, Any]:
        """Fetch tracking status for an AWB code. Returns the carrier JSON as-is."""
        code = (awb_code or "").strip()
        if not code:
            raise ShippingProviderError(400, {"message": "AWB code is required"})
        data = self._request("GET", TRACK_AWB_PATH.format(code=quote(code, safe="")))
        if not isinstance(data, dict):
            return {"tracking_data": data}
        return data

"""Shipping aggregator integration: token cache and REST client."""

from partsdesk.shipping.client import ShippingClient
from partsdesk.shipping.models import Shipment, ShippingOrderPayload, build_shipping_payload
from partsdesk.shipping.token_cache import CachedToken, TokenCache

__all__ = [
    "CachedToken",
    "Shipment",
    "ShippingClient",
    "ShippingOrderPayload",
    "TokenCache",
    "build_shipping_payload",
]

"""Carrier-facing shipping models.

ShippingOrderPayload is a read-only projection of an Order in the shape the
aggregator's adhoc-order endpoint expects. It is never persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from partsdesk.orders.models import Order

# Package defaults used for every parcel (cm / kg)
DEFAULT_LENGTH = 10
DEFAULT_BREADTH = 15
DEFAULT_HEIGHT = 10
DEFAULT_WEIGHT = 1
DEFAULT_SKU = "SKU123"


class ShippingItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    sku: str = DEFAULT_SKU
    units: int = Field(ge=1)
    selling_price: float = Field(ge=0)


class ShippingOrderPayload(BaseModel):
    """Adhoc-order request body."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    order_date: str
    pickup_location: str = "Primary"
    billing_customer_name: str
    billing_last_name: str = ""
    billing_address: str
    billing_city: str
    billing_pincode: str
    billing_state: str
    billing_country: str = "India"
    billing_email: str
    billing_phone: str
    shipping_is_billing: bool = True
    order_items: list[ShippingItem]
    payment_method: str = "Prepaid"
    sub_total: float
    length: float = DEFAULT_LENGTH
    breadth: float = DEFAULT_BREADTH
    height: float = DEFAULT_HEIGHT
    weight: float = DEFAULT_WEIGHT


class Shipment(BaseModel):
    """Identifiers the carrier returns for a created shipment."""

    carrier_order_id: str
    shipment_id: str = ""
    status: str = ""
    awb_code: str = ""


def build_shipping_payload(order: Order, order_date: datetime | None = None) -> ShippingOrderPayload:
    """Project an order into the carrier's adhoc-order shape."""
    when = order_date or datetime.now(timezone.utc)
    customer = order.customer
    return ShippingOrderPayload(
        order_id=order.order_number or order.id,
        order_date=when.strftime("%Y-%m-%d"),
        billing_customer_name=customer.name,
        billing_address=customer.address,
        billing_city=customer.city,
        billing_pincode=customer.pincode,
        billing_state=customer.state,
        billing_email=customer.email,
        billing_phone=customer.phone,
        order_items=[
            ShippingItem(
                name=item.name,
                sku=item.sku or DEFAULT_SKU,
                units=item.quantity,
                selling_price=item.price,
            )
            for item in order.items
        ],
        sub_total=order.sub_total,
    )

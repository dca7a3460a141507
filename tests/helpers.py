"""Test helpers: fake carrier, webhook signing, order factory."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from partsdesk.orders.models import Customer, Order, OrderItem, PaymentStatus

WEBHOOK_SECRET = "whsec-test"
KEY_SECRET = "key-secret-test"
CARRIER_URL = "https://carrier.test/v1/external"


class FakeCarrier:
    """Scriptable stand-in for the shipping aggregator, served via httpx.MockTransport."""

    def __init__(self) -> None:
        self.login_calls = 0
        self.requests: list[httpx.Request] = []
        self.tokens = iter(f"tok-{i}" for i in range(1, 1000))
        self.login_status = 200
        self.create_response: tuple[int, Any] = (
            200,
            {"order_id": 9001, "shipment_id": 7001, "status": "NEW", "awb_code": "AWB123"},
        )
        self.track_response: tuple[int, Any] = (
            200,
            {"tracking_data": {"shipment_status": 6, "track_status": 1}},
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/auth/login"):
            self.login_calls += 1
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"message": "Invalid credentials"})
            return httpx.Response(200, json={"token": next(self.tokens)})
        if path.endswith("/orders/create/adhoc"):
            status, body = self.create_response
            return httpx.Response(status, json=body)
        if "/courier/track/awb/" in path:
            status, body = self.track_response
            return httpx.Response(status, json=body)
        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler), timeout=10.0)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def captured_event(payment_id: str = "pay_1", order_id: str = "ord_1") -> bytes:
    return json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"id": payment_id, "order_id": order_id}},
    }).encode()


def make_order(**overrides: Any) -> Order:
    fields: dict[str, Any] = {
        "id": "o-1",
        "order_number": "RB-1001",
        "gateway_order_id": "ord_1",
        "payment_status": PaymentStatus.PENDING,
        "customer": Customer(
            name="Asha Rao",
            email="asha@example.com",
            phone="9876543210",
            address="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            pincode="560001",
        ),
        "items": [
            OrderItem(name="Microfiber Cloth 350GSM", quantity=2, price=199.0, sku="MF-350"),
            OrderItem(name="Seat Cover", quantity=1, price=1499.0),
        ],
    }
    fields.update(overrides)
    return Order(**fields)


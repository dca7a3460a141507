"""Shared fixtures for the Partsdesk test suite."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from helpers import (
    CARRIER_URL,
    KEY_SECRET,
    WEBHOOK_SECRET,
    FakeCarrier,
    make_order,
    sign,
)
from partsdesk.app import create_app
from partsdesk.config import Settings
from partsdesk.orders.store import InMemoryOrderStore
from partsdesk.webhooks.idempotency import WebhookDeduplicator


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        razorpay_key_secret=KEY_SECRET,
        shiprocket_email="ops@example.com",
        shiprocket_password="s3cret",
        shiprocket_base_url=CARRIER_URL,
    )


@pytest.fixture()
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture()
def store() -> InMemoryOrderStore:
    s = InMemoryOrderStore()
    s.add(make_order())
    return s


@pytest.fixture()
def app(settings, store, carrier):
    return create_app(
        settings,
        store=store,
        http=carrier.client(),
        deduplicator=WebhookDeduplicator(None),
    )


@pytest.fixture()
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def post_webhook(client) -> Callable[..., httpx.Response]:
    """POST a webhook body, signed unless ``signature`` is given explicitly."""

    def _post(
        body: bytes,
        signature: str | None = "auto",
        path: str = "/webhook",
        extra_headers: dict[str, str] | None = None,
    ):
        sent = {"Content-Type": "application/json", **(extra_headers or {})}
        if signature == "auto":
            sent["X-Signature"] = sign(body)
        elif signature is not None:
            sent["X-Signature"] = signature
        return client.post(path, content=body, headers=sent)

    return _post

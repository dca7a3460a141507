"""FastAPI application factory.

Builds the long-lived collaborators once per process and hangs them off
``app.state.services``:
- one httpx.Client (explicit timeout) shared by the token cache and the
  shipping client
- one TokenCache, owned here and passed by reference to the ShippingClient
- the order store (Postgres when DATABASE_URL is set, else in-memory)
- the webhook deduplicator (Redis when REDIS_URL is set, else disabled)
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI

from partsdesk import __version__
from partsdesk.api.routes import health_router, router as api_router
from partsdesk.config import Settings, get_settings
from partsdesk.orders.store import InMemoryOrderStore, OrderStore, PostgresOrderStore
from partsdesk.orders.sync import OrderSync
from partsdesk.shipping.client import ShippingClient
from partsdesk.shipping.service import ShipmentService
from partsdesk.shipping.token_cache import TokenCache
from partsdesk.webhooks.handlers import register_webhook_routes
from partsdesk.webhooks.idempotency import WebhookDeduplicator

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Services:
    """Process-wide collaborators shared by all requests."""

    settings: Settings
    http: httpx.Client
    tokens: TokenCache
    shipping_client: ShippingClient
    store: OrderStore
    order_sync: OrderSync
    shipments: ShipmentService
    deduplicator: WebhookDeduplicator


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stream handler on the root logger."""
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT, stream=sys.stdout)


def build_services(
    settings: Settings,
    *,
    store: OrderStore | None = None,
    http: httpx.Client | None = None,
    deduplicator: WebhookDeduplicator | None = None,
) -> Services:
    if http is None:
        http = httpx.Client(timeout=settings.http_timeout_seconds)
    if store is None:
        if settings.database_url:
            store = PostgresOrderStore(settings.database_url)
        else:
            logger.warning("DATABASE_URL not set, using in-memory order store")
            store = InMemoryOrderStore()
    if deduplicator is None:
        deduplicator = WebhookDeduplicator.from_url(
            settings.redis_url,
            ttl_seconds=settings.webhook_dedup_ttl_seconds,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )

    tokens = TokenCache(
        http,
        settings.shiprocket_base_url,
        settings.shiprocket_email,
        settings.shiprocket_password,
        ttl_seconds=settings.shiprocket_token_ttl_seconds,
        margin_seconds=settings.shiprocket_token_margin_seconds,
    )
    shipping_client = ShippingClient(http, settings.shiprocket_base_url, tokens)
    order_sync = OrderSync(store)
    return Services(
        settings=settings,
        http=http,
        tokens=tokens,
        shipping_client=shipping_client,
        store=store,
        order_sync=order_sync,
        shipments=ShipmentService(store, order_sync, shipping_client),
        deduplicator=deduplicator,
    )


def create_app(settings: Settings | None = None, **overrides) -> FastAPI:
    """Create the Partsdesk API app.

    ``overrides`` are passed to build_services (store, http, deduplicator).
    """
    settings = settings or get_settings()
    services = build_services(settings, **overrides)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(services.store, PostgresOrderStore):
            services.store.init_tables()
        try:
            yield
        finally:
            services.http.close()

    app = FastAPI(title="Partsdesk", version=__version__, lifespan=lifespan)
    app.state.services = services

    register_webhook_routes(app)
    app.include_router(api_router)
    app.include_router(health_router)
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    port = 8060
    for i, arg in enumerate(sys.argv):
        if arg == "--port" and i + 1 < len(sys.argv):
            port = int(sys.argv[i + 1])
    uvicorn.run(create_app(settings), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()

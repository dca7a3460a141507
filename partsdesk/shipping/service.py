"""Order fulfilment: push a paid order to the carrier and record the shipment."""

from __future__ import annotations

import logging
import threading

from partsdesk.errors import InvalidTransition, OrderNotFound, ShipmentInProgress
from partsdesk.orders.models import PaymentStatus
from partsdesk.orders.store import OrderStore
from partsdesk.orders.sync import OrderSync, SyncOutcome
from partsdesk.shipping.client import ShippingClient
from partsdesk.shipping.models import Shipment

logger = logging.getLogger(__name__)


class ShipmentService:
    """Creates carrier shipments for paid orders.

    At most one carrier order is created per order number at a time within
    this process; a concurrent request gets ShipmentInProgress.
    """

    def __init__(self, store: OrderStore, sync: OrderSync, client: ShippingClient):
        self._store = store
        self._sync = sync
        self._client = client
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def ship_order(self, order_number: str) -> Shipment:
        """Create the carrier order and move the order to shipped.

        Only paid orders ship. The carrier call happens before the status
        write; if the write loses a race the shipment still exists upstream
        and the error propagates for an operator to reconcile.
        """
        with self._lock:
            if order_number in self._in_flight:
                raise ShipmentInProgress(order_number)
            self._in_flight.add(order_number)
        try:
            return self._ship(order_number)
        finally:
            with self._lock:
                self._in_flight.discard(order_number)

    def _ship(self, order_number: str) -> Shipment:
        order = self._store.get_by_order_number(order_number)
        if order is None:
            raise OrderNotFound(order_number)
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidTransition(order.id, order.payment_status.value, PaymentStatus.SHIPPED.value)

        shipment = self._client.create_shipment(order)
        if not shipment.awb_code:
            logger.warning(
                "Carrier returned no AWB for order %s (carrier_order=%s); assign one before tracking",
                order_number, shipment.carrier_order_id,
            )

        outcome = self._sync.mark_shipped(order, shipment.awb_code)
        if outcome is not SyncOutcome.APPLIED:
            logger.error(
                "Order %s was shipped elsewhere; carrier order %s is a duplicate to cancel",
                order_number, shipment.carrier_order_id,
            )
            raise InvalidTransition(order.id, PaymentStatus.SHIPPED.value, PaymentStatus.SHIPPED.value)

        logger.info("Order %s shipped (carrier_order=%s)", order_number, shipment.carrier_order_id)
        return shipment

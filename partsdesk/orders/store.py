"""Order store: the persistence collaborator for order sync.

Two implementations behind the OrderStore protocol:
- InMemoryOrderStore: dict-backed, lock-guarded (dev server and tests)
- PostgresOrderStore: psycopg, one connection per call, autocommit

Write contract:
- transition() is a compare-and-set on payment_status; it returns False
  when the row is no longer in the expected status
- An audit row is written in the same unit of work as the update, and only
  when the update happened
- Backend failures surface as PersistenceError
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import asdict
from typing import Any, Protocol, runtime_checkable

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from partsdesk.errors import PersistenceError
from partsdesk.orders.models import (
    Customer,
    Order,
    OrderEvent,
    OrderItem,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

# Fields a transition may change, beyond payment_status itself
UPDATABLE_FIELDS = frozenset({
    "payment_status",
    "gateway_payment_id",
    "awb_code",
    "payment_error",
    "refund_id",
    "refund_amount",
    "updated_at",
})


@runtime_checkable
class OrderStore(Protocol):
    """Protocol for order persistence."""

    def add(self, order: Order) -> None:
        """Insert a new order."""
        ...

    def get(self, order_id: str) -> Order | None:
        """Fetch by internal id."""
        ...

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        """Fetch by the payment gateway's order reference."""
        ...

    def get_by_order_number(self, order_number: str) -> Order | None:
        """Fetch by customer-facing order number."""
        ...

    def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Order | None:
        """Fetch by the payment id recorded when the payment was captured."""
        ...

    def transition(
        self,
        order_id: str,
        expected_status: PaymentStatus,
        changes: dict[str, Any],
        event: OrderEvent,
    ) -> bool:
        """Apply ``changes`` iff the order is still in ``expected_status``."""
        ...

    def events(self, order_id: str) -> list[OrderEvent]:
        """Audit rows for an order, oldest first."""
        ...


def _check_fields(changes: dict[str, Any]) -> None:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {sorted(unknown)}")


# ── In-memory ─────────────────────────────────────────────────────────────


class InMemoryOrderStore:
    """Dict-backed order store. Returns copies so callers can't mutate state."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._events: dict[str, list[OrderEvent]] = {}
        self._lock = threading.Lock()

    def add(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = copy.deepcopy(order)
            self._events.setdefault(order.id, [])

    def get(self, order_id: str) -> Order | None:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        if not gateway_order_id:
            return None
        with self._lock:
            for order in self._orders.values():
                if order.gateway_order_id == gateway_order_id:
                    return copy.deepcopy(order)
        return None

    def get_by_order_number(self, order_number: str) -> Order | None:
        if not order_number:
            return None
        with self._lock:
            for order in self._orders.values():
                if order.order_number == order_number:
                    return copy.deepcopy(order)
        return None

    def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Order | None:
        if not gateway_payment_id:
            return None
        with self._lock:
            for order in self._orders.values():
                if order.gateway_payment_id == gateway_payment_id:
                    return copy.deepcopy(order)
        return None

    def transition(
        self,
        order_id: str,
        expected_status: PaymentStatus,
        changes: dict[str, Any],
        event: OrderEvent,
    ) -> bool:
        _check_fields(changes)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status != expected_status:
                return False
            for name, value in changes.items():
                setattr(order, name, value)
            self._events.setdefault(order_id, []).append(copy.deepcopy(event))
            return True

    def events(self, order_id: str) -> list[OrderEvent]:
        with self._lock:
            return copy.deepcopy(self._events.get(order_id, []))


# ── PostgreSQL ────────────────────────────────────────────────────────────


_ORDER_COLUMNS = (
    "id, order_number, gateway_order_id, gateway_payment_id, payment_status, "
    "customer, items, awb_code, payment_error, refund_id, refund_amount, "
    "created_at, updated_at"
)


def _row_to_order(row: dict[str, Any]) -> Order:
    customer = row.get("customer") or {}
    items = row.get("items") or []
    return Order(
        id=row["id"],
        order_number=row["order_number"] or "",
        gateway_order_id=row["gateway_order_id"] or "",
        gateway_payment_id=row["gateway_payment_id"] or "",
        payment_status=PaymentStatus(row["payment_status"]),
        customer=Customer(**customer),
        items=[OrderItem(**item) for item in items],
        awb_code=row["awb_code"] or "",
        payment_error=row["payment_error"] or "",
        refund_id=row["refund_id"] or "",
        refund_amount=float(row["refund_amount"] or 0),
        created_at=float(row["created_at"] or 0),
        updated_at=float(row["updated_at"] or 0),
    )


def _row_to_event(row: dict[str, Any]) -> OrderEvent:
    return OrderEvent(
        order_id=row["order_id"],
        from_status=PaymentStatus(row["from_status"]),
        to_status=PaymentStatus(row["to_status"]),
        source=row["source"],
        reference=row["reference"] or "",
        created_at=float(row["created_at"] or 0),
        metadata=row["metadata"] or {},
    )


class PostgresOrderStore:
    """PostgreSQL-backed order store.

    Timestamps are stored as epoch seconds (DOUBLE PRECISION) to match the
    in-memory model; JSON columns hold the customer and line items.
    """

    def __init__(self, database_url: str) -> None:
        self._database_url = database_url

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._database_url, autocommit=True, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create order tables if they don't exist.  Idempotent."""
        try:
            with self._get_conn() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS orders (
                        id                 TEXT PRIMARY KEY,
                        order_number       TEXT UNIQUE,
                        gateway_order_id   TEXT UNIQUE,
                        gateway_payment_id TEXT DEFAULT '',
                        payment_status     TEXT NOT NULL DEFAULT 'pending',
                        customer           JSONB DEFAULT '{}',
                        items              JSONB DEFAULT '[]',
                        awb_code           TEXT DEFAULT '',
                        payment_error      TEXT DEFAULT '',
                        refund_id          TEXT DEFAULT '',
                        refund_amount      DOUBLE PRECISION DEFAULT 0,
                        created_at         DOUBLE PRECISION NOT NULL,
                        updated_at         DOUBLE PRECISION NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS order_events (
                        id          SERIAL PRIMARY KEY,
                        order_id    TEXT NOT NULL REFERENCES orders(id),
                        from_status TEXT NOT NULL,
                        to_status   TEXT NOT NULL,
                        source      TEXT NOT NULL,
                        reference   TEXT DEFAULT '',
                        metadata    JSONB DEFAULT '{}',
                        created_at  DOUBLE PRECISION NOT NULL
                    )
                """)
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to initialise order tables: {e}") from e
        logger.info("Order tables initialized")

    def add(self, order: Order) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute(
                    f"INSERT INTO orders ({_ORDER_COLUMNS}) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        order.id,
                        order.order_number or None,
                        order.gateway_order_id or None,
                        order.gateway_payment_id,
                        order.payment_status.value,
                        json.dumps(asdict(order.customer)),
                        json.dumps([asdict(i) for i in order.items]),
                        order.awb_code,
                        order.payment_error,
                        order.refund_id,
                        order.refund_amount,
                        order.created_at,
                        order.updated_at,
                    ),
                )
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to insert order {order.id}: {e}") from e

    def _fetch_one(self, column: str, value: str) -> Order | None:
        if not value:
            return None
        query = sql.SQL("SELECT {cols} FROM orders WHERE {col} = %s").format(
            cols=sql.SQL(_ORDER_COLUMNS),
            col=sql.Identifier(column),
        )
        try:
            with self._get_conn() as conn:
                row = conn.execute(query, (value,)).fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Order lookup failed ({column}): {e}") from e
        return _row_to_order(row) if row else None

    def get(self, order_id: str) -> Order | None:
        return self._fetch_one("id", order_id)

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        return self._fetch_one("gateway_order_id", gateway_order_id)

    def get_by_order_number(self, order_number: str) -> Order | None:
        return self._fetch_one("order_number", order_number)

    def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Order | None:
        return self._fetch_one("gateway_payment_id", gateway_payment_id)

    def transition(
        self,
        order_id: str,
        expected_status: PaymentStatus,
        changes: dict[str, Any],
        event: OrderEvent,
    ) -> bool:
        _check_fields(changes)
        values = {
            k: (v.value if isinstance(v, PaymentStatus) else v)
            for k, v in changes.items()
        }
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in values
        )
        update = sql.SQL(
            "UPDATE orders SET {assignments} WHERE id = %s AND payment_status = %s"
        ).format(assignments=assignments)

        try:
            with self._get_conn() as conn, conn.transaction():
                cur = conn.execute(
                    update,
                    (*values.values(), order_id, expected_status.value),
                )
                if cur.rowcount != 1:
                    return False
                conn.execute(
                    """INSERT INTO order_events
                       (order_id, from_status, to_status, source, reference, metadata, created_at)
                       VALUES (%s, %s, %s, %s, %s, %s, %s)""",
                    (
                        event.order_id,
                        event.from_status.value,
                        event.to_status.value,
                        event.source,
                        event.reference,
                        json.dumps(event.metadata, default=str),
                        event.created_at or time.time(),
                    ),
                )
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to update order {order_id}: {e}") from e
        return True

    def events(self, order_id: str) -> list[OrderEvent]:
        try:
            with self._get_conn() as conn:
                rows = conn.execute(
                    """SELECT order_id, from_status, to_status, source, reference, metadata, created_at
                       FROM order_events WHERE order_id = %s ORDER BY id""",
                    (order_id,),
                ).fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to read events for {order_id}: {e}") from e
        return [_row_to_event(r) for r in rows]

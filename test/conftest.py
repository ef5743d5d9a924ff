"""
Shared fixtures: an in-memory stand-in for the asyncpg pool that understands the
statements in order_service.db, with real commit/rollback semantics.
"""
import copy
import re
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from order_service import db
from order_service.customer_client import Customer
from order_service.notifications import NotificationDispatcher
from order_service.order_state import OrderStatus
from order_service.orders import OrderService

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _like_regex(pattern: str) -> re.Pattern:
    out, escaped = [], False
    for ch in pattern:
        if escaped:
            out.append(re.escape(ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return re.compile("".join(out), re.IGNORECASE | re.DOTALL)


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self._conn = conn
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = copy.deepcopy(self._conn.store.tables())
        return self

    async def __aexit__(self, exc_type, exc, tb):
        store = self._conn.store
        store.xact_locks.clear()
        if exc_type is None:
            store.commits += 1
        else:
            store.restore(self._snapshot)
            store.rollbacks += 1
        return False


class FakeConnection:
    def __init__(self, store: "FakeStore"):
        self.store = store

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def fetchrow(self, sql, *args):
        self.store.maybe_fail(sql)
        if sql in (db.SELECT_ORDER, db.SELECT_ORDER_FOR_UPDATE):
            order = self.store.orders.get(args[0])
            return dict(order) if order is not None else None
        if sql == db.UPDATE_ORDER_STATUS:
            status, order_id = args
            order = self.store.orders.get(order_id)
            if order is None:
                return None
            order["status"] = status
            order["updated_at"] = self.store.now()
            return dict(order)
        if sql == db.INSERT_ORDER:
            (order_number, customer_id, status, subtotal, tax, shipping,
             discount, total, currency, notes, created_by) = args
            # DEFAULT NOW(); order numbers count the current year's orders
            now = datetime.now(timezone.utc)
            order = {
                "id": uuid.uuid4(),
                "order_number": order_number,
                "customer_id": customer_id,
                "status": status,
                "subtotal": subtotal,
                "tax_amount": tax,
                "shipping_amount": shipping,
                "discount_amount": discount,
                "total_amount": total,
                "currency": currency,
                "notes": notes,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            }
            self.store.orders[order["id"]] = order
            return dict(order)
        if sql == db.INSERT_ORDER_ITEM:
            order_id, name, sku, quantity, unit_price, total_price = args
            item = {
                "id": len(self.store.items) + 1,
                "order_id": order_id,
                "product_name": name,
                "product_sku": sku,
                "quantity": quantity,
                "unit_price": unit_price,
                "total_price": total_price,
                "created_at": self.store.now(),
            }
            self.store.items.append(item)
            return dict(item)
        if sql == db.ORDER_STATS:
            since_30d, since_7d = args
            orders = list(self.store.orders.values())
            totals = [o["total_amount"] for o in orders]
            row = {
                "total_orders": len(orders),
                "orders_30d": sum(1 for o in orders if o["created_at"] >= since_30d),
                "orders_7d": sum(1 for o in orders if o["created_at"] >= since_7d),
                "total_revenue": sum(totals, Decimal("0")),
                "average_order_value": sum(totals, Decimal("0")) / len(totals) if totals else Decimal("0"),
            }
            for status in OrderStatus:
                row[f"{status.value}_orders"] = sum(1 for o in orders if o["status"] == status.value)
            return row
        raise AssertionError(f"unexpected fetchrow: {sql}")

    async def fetchval(self, sql, *args):
        self.store.maybe_fail(sql)
        if sql == db.NEXT_ORDER_NUMBER:
            if db.ORDER_NUMBER_LOCK_ID not in self.store.xact_locks:
                raise AssertionError("order number read without holding the allocation lock")
            year = args[0]
            return 1 + sum(1 for o in self.store.orders.values() if o["created_at"].year == year)
        if sql == db.COUNT_ORDERS:
            return len(self.store.filter_orders(*args))
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def fetch(self, sql, *args):
        self.store.maybe_fail(sql)
        if sql == db.SELECT_STATUS_HISTORY:
            return [dict(h) for h in self.store.history if h["order_id"] == args[0]]
        if sql == db.SELECT_ORDER_ITEMS:
            return [dict(i) for i in self.store.items if i["order_id"] == args[0]]
        for (field, order), list_sql in db.LIST_ORDERS.items():
            if sql == list_sql:
                *filters, limit, offset = args
                rows = sorted(self.store.filter_orders(*filters), key=lambda o: str(o["id"]))
                rows.sort(key=lambda o: o[field], reverse=order == "desc")
                return [dict(o) for o in rows[offset:offset + limit]]
        raise AssertionError(f"unexpected fetch: {sql}")

    async def execute(self, sql, *args):
        self.store.maybe_fail(sql)
        if sql == db.LOCK_ORDER_NUMBERS:
            self.store.xact_locks.add(args[0])
            return "SELECT 1"
        if sql == db.INSERT_STATUS_HISTORY:
            order_id, previous_status, new_status, changed_by, change_reason = args
            self.store.history.append({
                "id": len(self.store.history) + 1,
                "order_id": order_id,
                "previous_status": previous_status,
                "new_status": new_status,
                "changed_by": changed_by,
                "change_reason": change_reason,
                "created_at": self.store.now(),
            })
            return "INSERT 0 1"
        raise AssertionError(f"unexpected execute: {sql}")


class _Acquire:
    def __init__(self, conn: FakeConnection):
        self._conn = conn

    async def __aenter__(self) -> FakeConnection:
        return self._conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeStore:
    """The three tables plus counters, shared by every connection of a FakePool."""

    def __init__(self):
        self.orders: dict[uuid.UUID, dict] = {}
        self.items: list[dict] = []
        self.history: list[dict] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on: dict[str, Exception] = {}
        self.xact_locks: set[int] = set()
        self._ticks = 0

    def now(self) -> datetime:
        self._ticks += 1
        return _EPOCH + timedelta(seconds=self._ticks)

    def tables(self):
        return self.orders, self.items, self.history

    def restore(self, snapshot) -> None:
        self.orders, self.items, self.history = snapshot

    def maybe_fail(self, sql: str) -> None:
        if sql in self.fail_on:
            raise self.fail_on[sql]

    def filter_orders(self, customer_id, status, pattern) -> list[dict]:
        """Same filters as db._ORDER_FILTERS; pattern is an ILIKE pattern."""
        regex = _like_regex(pattern) if pattern is not None else None
        return [
            o for o in self.orders.values()
            if (customer_id is None or o["customer_id"] == customer_id)
            and (status is None or o["status"] == status)
            and (regex is None or any(regex.fullmatch(o[col] or "") for col in ("order_number", "notes")))
        ]


class FakePool:
    def __init__(self):
        self.store = FakeStore()

    def acquire(self) -> _Acquire:
        return _Acquire(FakeConnection(self.store))

    def add_order(
        self,
        status: str = "draft",
        total_amount: Decimal = Decimal("250.00"),
        customer_id: uuid.UUID | None = None,
        notes: str | None = None,
        created_at: datetime | None = None,
    ) -> uuid.UUID:
        order_id = uuid.uuid4()
        now = created_at or self.store.now()
        self.store.orders[order_id] = {
            "id": order_id,
            "order_number": f"ORD-2026-{len(self.store.orders) + 1:03d}",
            "customer_id": customer_id or uuid.uuid4(),
            "status": status,
            "subtotal": total_amount,
            "tax_amount": Decimal("0.00"),
            "shipping_amount": Decimal("0.00"),
            "discount_amount": Decimal("0.00"),
            "total_amount": total_amount,
            "currency": "CZK",
            "notes": notes,
            "created_by": "user-1",
            "created_at": now,
            "updated_at": now,
        }
        return order_id

    def history_for(self, order_id: uuid.UUID) -> list[dict]:
        return [h for h in self.store.history if h["order_id"] == order_id]


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def customer() -> Customer:
    return Customer(id="cust-1", email="jana.novakova@example.com", first_name="Jana", last_name="Novakova")


@pytest.fixture
def customers(customer):
    client = AsyncMock()
    client.get_customer = AsyncMock(return_value=customer)
    return client


@pytest.fixture
def dispatcher():
    mock = AsyncMock(spec=NotificationDispatcher)
    mock.dispatch.return_value = "msg-1"
    return mock


@pytest.fixture
def service(pool, dispatcher, customers) -> OrderService:
    return OrderService(pool, dispatcher=dispatcher, customers=customers)

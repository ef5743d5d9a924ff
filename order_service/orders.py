"""
Order service: order creation, lookup and the status-change transaction.

update_order_status performs one status change as an atomic unit:
lock the order row, validate the transition and its business rules,
update the row, append one history entry, commit. Only after the commit
is a customer notification attempted, on a detached task whose failure is logged.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

import asyncpg

from order_service import db, status_manager
from order_service.customer_client import CustomerClient
from order_service.errors import (
    BusinessRuleViolationError,
    IllegalTransitionError,
    InvalidCurrentStatusError,
    OrderNotFoundError,
    PersistenceError,
)
from order_service.metrics import (
    order_notifications_total,
    order_status_transitions_rejected_total,
    order_status_transitions_total,
    orders_created_total,
)
from order_service.notifications import NotificationDispatcher, build_status_notification
from order_service.order_state import OrderStatus, TransitionContext, parse_status
from order_service.schemas import OrderCreate, OrderItemIn

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
CREATION_REASON = "Order created"
CANCELLATION_REASON = "Order cancelled"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_order_totals(
    items: Iterable[OrderItemIn],
    tax_amount: Decimal = Decimal("0"),
    shipping_amount: Decimal = Decimal("0"),
    discount_amount: Decimal = Decimal("0"),
) -> dict[str, Decimal]:
    """subtotal from line items; total = subtotal + tax + shipping - discount."""
    subtotal = sum((item.unit_price * item.quantity for item in items), Decimal("0"))
    total = subtotal + tax_amount + shipping_amount - discount_amount
    return {
        "subtotal": _money(subtotal),
        "tax_amount": _money(tax_amount),
        "shipping_amount": _money(shipping_amount),
        "discount_amount": _money(discount_amount),
        "total_amount": _money(total),
    }


def _as_order_id(order_id: Any) -> uuid.UUID | None:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        return None


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class OrderService:
    """
    Orders backed by an asyncpg pool. The pool, notification dispatcher and
    customer client are injected; without a dispatcher no notifications are sent.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        dispatcher: NotificationDispatcher | None = None,
        customers: CustomerClient | None = None,
    ):
        self._pool = pool
        self._dispatcher = dispatcher
        self._customers = customers
        self._notification_tasks: set[asyncio.Task] = set()

    async def create_order(self, data: OrderCreate, created_by: str) -> dict:
        """Insert an order in draft with its items and the creation history entry."""
        totals = calculate_order_totals(
            data.items, data.tax_amount, data.shipping_amount, data.discount_amount
        )
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    order_number = await self._next_order_number(conn)
                    order = await conn.fetchrow(
                        db.INSERT_ORDER,
                        order_number,
                        data.customer_id,
                        OrderStatus.DRAFT.value,
                        totals["subtotal"],
                        totals["tax_amount"],
                        totals["shipping_amount"],
                        totals["discount_amount"],
                        totals["total_amount"],
                        data.currency,
                        data.notes,
                        created_by,
                    )
                    items = []
                    for item in data.items:
                        row = await conn.fetchrow(
                            db.INSERT_ORDER_ITEM,
                            order["id"],
                            item.product_name,
                            item.product_sku,
                            item.quantity,
                            _money(item.unit_price),
                            _money(item.unit_price * item.quantity),
                        )
                        items.append(dict(row))
                    await conn.execute(
                        db.INSERT_STATUS_HISTORY,
                        order["id"],
                        None,
                        OrderStatus.DRAFT.value,
                        created_by,
                        CREATION_REASON,
                    )
        except db.DATABASE_ERRORS as e:
            logger.exception("Failed to create order for customer %s", data.customer_id)
            raise PersistenceError(f"Failed to create order: {e}") from e

        orders_created_total.inc()
        logger.info("Created order %s (%s) for customer %s", order_number, order["id"], data.customer_id)
        return {**dict(order), "items": items}

    async def _next_order_number(self, conn: asyncpg.Connection) -> str:
        """ORD-<year>-<n>. Must run inside the creating transaction, which holds the lock until commit."""
        await conn.execute(db.LOCK_ORDER_NUMBERS, db.ORDER_NUMBER_LOCK_ID)
        year = datetime.now(timezone.utc).year
        next_number = await conn.fetchval(db.NEXT_ORDER_NUMBER, year)
        return f"ORD-{year}-{int(next_number):03d}"

    async def get_order(self, order_id: Any) -> dict | None:
        """Order with its items, or None if it does not exist."""
        oid = _as_order_id(order_id)
        if oid is None:
            return None
        try:
            async with self._pool.acquire() as conn:
                order = await conn.fetchrow(db.SELECT_ORDER, oid)
                if order is None:
                    return None
                items = await conn.fetch(db.SELECT_ORDER_ITEMS, oid)
        except db.DATABASE_ERRORS as e:
            raise PersistenceError(f"Failed to load order {order_id}: {e}") from e
        return {**dict(order), "items": [dict(i) for i in items]}

    async def get_status_history(self, order_id: Any) -> list[dict] | None:
        """History entries oldest first, or None if the order does not exist."""
        oid = _as_order_id(order_id)
        if oid is None:
            return None
        try:
            async with self._pool.acquire() as conn:
                order = await conn.fetchrow(db.SELECT_ORDER, oid)
                if order is None:
                    return None
                rows = await conn.fetch(db.SELECT_STATUS_HISTORY, oid)
        except db.DATABASE_ERRORS as e:
            raise PersistenceError(f"Failed to load history for order {order_id}: {e}") from e
        return [dict(r) for r in rows]

    async def get_next_statuses(self, order_id: Any) -> list[status_manager.NextStatus] | None:
        order = await self.get_order(order_id)
        if order is None:
            return None
        return status_manager.get_next_statuses(order["status"])

    async def list_orders(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        status: str | OrderStatus | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict:
        """
        One page of orders matching every given filter, plus pagination info.
        search matches order number or notes, case-insensitively.
        """
        sql = db.LIST_ORDERS.get((sort_by, sort_order))
        if sql is None:
            raise ValueError(f"Unsupported sort: {sort_by} {sort_order}")
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"Invalid page {page} / limit {limit}")
        filters = (
            customer_id,
            OrderStatus(status).value if status else None,
            f"%{_escape_like(search)}%" if search else None,
        )
        try:
            async with self._pool.acquire() as conn:
                total = await conn.fetchval(db.COUNT_ORDERS, *filters)
                rows = await conn.fetch(sql, *filters, limit, (page - 1) * limit)
        except db.DATABASE_ERRORS as e:
            raise PersistenceError(f"Failed to list orders: {e}") from e

        total_pages = -(-total // limit)
        return {
            "orders": [dict(r) for r in rows],
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_records": total,
                "has_next_page": page < total_pages,
                "has_previous_page": page > 1,
                "limit": limit,
            },
        }

    async def get_order_stats(self, now: datetime | None = None) -> dict:
        """Order counts overall, per status and for the last 30 and 7 days, plus revenue."""
        now = now or datetime.now(timezone.utc)
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(db.ORDER_STATS, now - timedelta(days=30), now - timedelta(days=7))
        except db.DATABASE_ERRORS as e:
            raise PersistenceError(f"Failed to compute order statistics: {e}") from e
        return {
            "total_orders": row["total_orders"],
            "by_status": {s.value: row[f"{s.value}_orders"] for s in OrderStatus},
            "orders_30d": row["orders_30d"],
            "orders_7d": row["orders_7d"],
            "total_revenue": _money(Decimal(row["total_revenue"])),
            "average_order_value": _money(Decimal(row["average_order_value"])),
        }

    async def update_order_status(
        self,
        order_id: Any,
        new_status: str | OrderStatus,
        changed_by: str,
        reason: str | None = None,
        context: TransitionContext | None = None,
    ) -> dict | None:
        """
        Change the order's status. Returns the updated order, or None if the order does not exist.

        Raises IllegalTransitionError, BusinessRuleViolationError, InvalidCurrentStatusError
        or PersistenceError; in each case the transaction has been rolled back.
        """
        oid = _as_order_id(order_id)
        if oid is None:
            return None
        context = context or TransitionContext()
        target = parse_status(new_status)
        logger.info("Updating order status: %s -> %s (by %s)", oid, new_status, changed_by)

        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    order = await conn.fetchrow(db.SELECT_ORDER_FOR_UPDATE, oid)
                    if order is None:
                        raise OrderNotFoundError(str(oid))
                    old_status = order["status"]

                    status_manager.validate_transition(old_status, new_status)
                    status_manager.validate_business_rules(order, new_status, context)

                    updated = await conn.fetchrow(db.UPDATE_ORDER_STATUS, target.value, oid)
                    change_reason = reason or status_manager.generate_automated_reason(
                        old_status, target, context
                    )
                    await conn.execute(
                        db.INSERT_STATUS_HISTORY,
                        oid,
                        old_status,
                        target.value,
                        changed_by,
                        change_reason,
                    )
        except OrderNotFoundError:
            logger.info("Order not found: %s", oid)
            return None
        except InvalidCurrentStatusError:
            order_status_transitions_rejected_total.labels(reason="invalid_current_status").inc()
            raise
        except IllegalTransitionError as e:
            order_status_transitions_rejected_total.labels(reason="illegal_transition").inc()
            logger.info("Rejected status change for order %s: %s", oid, e)
            raise
        except BusinessRuleViolationError as e:
            order_status_transitions_rejected_total.labels(reason="business_rule").inc()
            logger.info("Rejected status change for order %s: %s", oid, e)
            raise
        except db.DATABASE_ERRORS as e:
            logger.exception("Status change for order %s rolled back", oid)
            raise PersistenceError(f"Failed to update status of order {oid}: {e}") from e

        order_status_transitions_total.labels(from_status=old_status, to_status=target.value).inc()
        logger.info("Order %s status updated: %s -> %s", oid, old_status, target.value)

        updated = dict(updated)
        if status_manager.get_status_metadata(target).customer_visible:
            self._schedule_notification(updated, old_status, target, change_reason, context)
        return updated

    async def cancel_order(self, order_id: Any, cancelled_by: str, reason: str | None = None) -> dict | None:
        """Soft delete: orders are never removed, only moved to cancelled."""
        return await self.update_order_status(
            order_id, OrderStatus.CANCELLED, cancelled_by, reason or CANCELLATION_REASON
        )

    def _schedule_notification(
        self,
        order: dict,
        old_status: str,
        new_status: OrderStatus,
        reason: str,
        context: TransitionContext,
    ) -> None:
        if self._dispatcher is None:
            return
        t = asyncio.create_task(self._notify_status_change(order, old_status, new_status, reason, context))
        self._notification_tasks.add(t)
        t.add_done_callback(self._notification_tasks.discard)

    async def _notify_status_change(
        self,
        order: dict,
        old_status: str,
        new_status: OrderStatus,
        reason: str,
        context: TransitionContext,
    ) -> None:
        # Runs detached from the committed transaction; nothing raised here may reach the caller.
        try:
            customer = None
            if self._customers is not None:
                customer = await self._customers.get_customer(order["customer_id"])
            if customer is None or not customer.email:
                order_notifications_total.labels(outcome="skipped").inc()
                logger.warning("No customer email for order %s, notification skipped", order["id"])
                return
            payload = build_status_notification(order, customer, old_status, new_status, reason, context)
            await self._dispatcher.dispatch(payload)
            order_notifications_total.labels(outcome="sent").inc()
        except Exception as e:
            order_notifications_total.labels(outcome="failed").inc()
            logger.warning("Notification for order %s (%s -> %s) failed: %s", order["id"], old_status, new_status, e)

    async def wait_for_notifications(self, timeout: float | None = None) -> None:
        """Wait for in-flight notifications; cancel whatever is still pending after timeout."""
        if not self._notification_tasks:
            return
        logger.info("Waiting for %d in-flight notification(s) ...", len(self._notification_tasks))
        _, pending = await asyncio.wait(set(self._notification_tasks), timeout=timeout)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

"""
Async Postgres: orders (current status per order), order_items, order_status_history (append-only audit).
Every status change runs in one transaction: lock the order row, validate, update it, append history.
"""
import asyncpg

from order_service.config import settings

_pool: asyncpg.Pool | None = None

# asyncpg errors that mean the store failed, as opposed to a workflow decision
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)

SELECT_ORDER = "SELECT * FROM orders WHERE id = $1;"
SELECT_ORDER_FOR_UPDATE = "SELECT * FROM orders WHERE id = $1 FOR UPDATE;"
UPDATE_ORDER_STATUS = """
    UPDATE orders SET status = $1, updated_at = NOW()
    WHERE id = $2
    RETURNING *;
"""
INSERT_STATUS_HISTORY = """
    INSERT INTO order_status_history (order_id, previous_status, new_status, changed_by, change_reason)
    VALUES ($1, $2, $3, $4, $5);
"""
SELECT_STATUS_HISTORY = """
    SELECT * FROM order_status_history
    WHERE order_id = $1
    ORDER BY created_at ASC, id ASC;
"""
SELECT_ORDER_ITEMS = "SELECT * FROM order_items WHERE order_id = $1 ORDER BY created_at ASC, id ASC;"

# Optional filters: a NULL parameter disables its condition. $3 is an ILIKE pattern.
_ORDER_FILTERS = """
    WHERE ($1::uuid IS NULL OR customer_id = $1)
      AND ($2::text IS NULL OR status = $2)
      AND ($3::text IS NULL OR order_number ILIKE $3 OR notes ILIKE $3)
"""
COUNT_ORDERS = f"SELECT COUNT(*) FROM orders {_ORDER_FILTERS};"
SORT_FIELDS = ("created_at", "updated_at", "order_number", "status", "total_amount")
SORT_ORDERS = ("asc", "desc")
# Column names cannot be bound parameters, so each allowed sort gets its own statement.
LIST_ORDERS = {
    (field, order): f"""
    SELECT * FROM orders {_ORDER_FILTERS}
    ORDER BY {field} {order.upper()}, id ASC
    LIMIT $4 OFFSET $5;
"""
    for field in SORT_FIELDS
    for order in SORT_ORDERS
}
ORDER_STATS = """
    SELECT
        COUNT(*) AS total_orders,
        COUNT(*) FILTER (WHERE status = 'draft') AS draft_orders,
        COUNT(*) FILTER (WHERE status = 'pending') AS pending_orders,
        COUNT(*) FILTER (WHERE status = 'confirmed') AS confirmed_orders,
        COUNT(*) FILTER (WHERE status = 'processing') AS processing_orders,
        COUNT(*) FILTER (WHERE status = 'shipped') AS shipped_orders,
        COUNT(*) FILTER (WHERE status = 'delivered') AS delivered_orders,
        COUNT(*) FILTER (WHERE status = 'cancelled') AS cancelled_orders,
        COUNT(*) FILTER (WHERE status = 'refunded') AS refunded_orders,
        COUNT(*) FILTER (WHERE created_at >= $1) AS orders_30d,
        COUNT(*) FILTER (WHERE created_at >= $2) AS orders_7d,
        COALESCE(SUM(total_amount), 0) AS total_revenue,
        COALESCE(AVG(total_amount), 0) AS average_order_value
    FROM orders;
"""

# Order numbers are COUNT+1 per year; allocation is serialised by a transaction-scoped
# advisory lock so concurrent creates cannot read the same count.
ORDER_NUMBER_LOCK_ID = 72_010_001
LOCK_ORDER_NUMBERS = "SELECT pg_advisory_xact_lock($1);"
NEXT_ORDER_NUMBER = """
    SELECT COUNT(*) + 1 AS next_number
    FROM orders
    WHERE EXTRACT(YEAR FROM created_at) = $1;
"""
INSERT_ORDER = """
    INSERT INTO orders (
        order_number, customer_id, status, subtotal, tax_amount, shipping_amount,
        discount_amount, total_amount, currency, notes, created_by
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
    RETURNING *;
"""
INSERT_ORDER_ITEM = """
    INSERT INTO order_items (order_id, product_name, product_sku, quantity, unit_price, total_price)
    VALUES ($1, $2, $3, $4, $5, $6)
    RETURNING *;
"""


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                order_number VARCHAR(50) NOT NULL UNIQUE,
                customer_id UUID NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'draft' CHECK (status IN (
                    'draft', 'pending', 'confirmed', 'processing',
                    'shipped', 'delivered', 'cancelled', 'refunded'
                )),
                subtotal NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (subtotal >= 0),
                tax_amount NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (tax_amount >= 0),
                shipping_amount NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (shipping_amount >= 0),
                discount_amount NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (discount_amount >= 0),
                total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (total_amount >= 0),
                currency VARCHAR(3) NOT NULL DEFAULT 'CZK' CHECK (currency IN ('CZK', 'EUR', 'USD')),
                notes TEXT,
                created_by VARCHAR(255) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_customer_id ON orders(customer_id);
            CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id BIGSERIAL PRIMARY KEY,
                order_id UUID NOT NULL REFERENCES orders(id),
                product_name VARCHAR(255) NOT NULL,
                product_sku VARCHAR(100),
                quantity INT NOT NULL CHECK (quantity > 0),
                unit_price NUMERIC(12, 2) NOT NULL CHECK (unit_price >= 0),
                total_price NUMERIC(12, 2) NOT NULL CHECK (total_price >= 0),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_status_history (
                id BIGSERIAL PRIMARY KEY,
                order_id UUID NOT NULL REFERENCES orders(id),
                previous_status VARCHAR(20),
                new_status VARCHAR(20) NOT NULL,
                changed_by VARCHAR(255) NOT NULL,
                change_reason TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_status_history_order_id
            ON order_status_history(order_id);
        """)

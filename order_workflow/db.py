"""
Async Postgres order store: one row per order holding the full document as JSONB.
Writes are serialized per order by an optimistic `version` column; order numbers
are protected by UNIQUE(order_number) and re-allocated on conflict.
"""
import logging
from datetime import datetime, timezone
from typing import NamedTuple

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from order_workflow.config import settings
from order_workflow.domain import Order
from order_workflow.errors import AllocationConflictError
from order_workflow.metrics import allocation_conflicts_total
from order_workflow.order_number import allocate, day_window, local_today, order_number_prefix

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


class ConcurrentUpdateError(Exception):
    """Raised when the order changed since it was read (version mismatch). Caller reloads and retries."""
    def __init__(self, order_number: str, expected_version: int):
        self.order_number = order_number
        self.expected_version = expected_version
        super().__init__(f"order {order_number} was modified concurrently (expected version {expected_version})")


class StoredOrder(NamedTuple):
    order: Order
    version: int


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
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
                order_number VARCHAR(20) PRIMARY KEY,
                user_id VARCHAR(255) NOT NULL,
                status VARCHAR(50) NOT NULL,
                document JSONB NOT NULL,
                version INT NOT NULL DEFAULT 1,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created_at
            ON orders(created_at);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_user_id
            ON orders(user_id);
        """)


async def fetch_order(pool: asyncpg.Pool, order_number: str) -> StoredOrder | None:
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            "SELECT document, version FROM orders WHERE order_number = $1;",
            order_number,
        )
    if row is None:
        return None
    return StoredOrder(Order.model_validate_json(row["document"]), row["version"])


async def order_numbers_between(
    pool: asyncpg.Pool,
    start: datetime,
    end: datetime,
    prefix: str,
) -> list[str]:
    """Order numbers created in [start, end) that carry the day's prefix."""
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT order_number FROM orders
            WHERE created_at >= $1 AND created_at < $2 AND order_number LIKE $3
            ORDER BY order_number DESC;
            """,
            start,
            end,
            f"{prefix}%",
        )
    return [r["order_number"] for r in rows]


async def insert_order(pool: asyncpg.Pool, order: Order) -> None:
    """Insert a numbered order. Raises AllocationConflictError if the number is taken."""
    document = order.model_dump_json(by_alias=True)
    async with pool.acquire() as conn:
        try:
            await conn.execute(
                """
                INSERT INTO orders (order_number, user_id, status, document, version, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, 1, $5, NOW());
                """,
                order.order_number,
                order.user,
                order.status.value,
                document,
                order.created_at,
            )
        except UniqueViolationError:
            raise AllocationConflictError(order.order_number)


async def save_order(pool: asyncpg.Pool, order: Order, expected_version: int) -> int:
    """Replace the stored document if nobody wrote since `expected_version`. Returns the new version."""
    document = order.model_dump_json(by_alias=True)
    async with pool.acquire() as conn:
        new_version = await conn.fetchval(
            """
            UPDATE orders
            SET status = $1, document = $2::jsonb, version = version + 1, updated_at = NOW()
            WHERE order_number = $3 AND version = $4
            RETURNING version;
            """,
            order.status.value,
            document,
            order.order_number,
            expected_version,
        )
    if new_version is None:
        raise ConcurrentUpdateError(order.order_number, expected_version)
    return new_version


async def create_order(
    pool: asyncpg.Pool,
    draft: Order,
    tz_name: str | None = None,
    prefix: str | None = None,
    max_retries: int | None = None,
) -> Order:
    """
    Number and insert a draft order.
    Allocation reads today's numbers, computes the next one and inserts; a
    concurrent writer that took the same number makes the insert fail with
    AllocationConflictError and we allocate again, up to max_retries times.
    """
    tz_name = tz_name or settings.business_timezone
    prefix = prefix or settings.order_number_prefix
    max_retries = settings.order_number_max_retries if max_retries is None else max_retries

    if draft.created_at is None:
        draft = draft.model_copy(update={"created_at": datetime.now(timezone.utc)})
    day = local_today(tz_name, draft.created_at)
    start, end = day_window(day, tz_name)
    day_prefix = order_number_prefix(day, prefix)

    attempt = 0
    while True:
        existing = await order_numbers_between(pool, start, end, day_prefix)
        order = draft.model_copy(update={"order_number": allocate(existing, day, prefix)})
        try:
            await insert_order(pool, order)
        except AllocationConflictError:
            allocation_conflicts_total.inc()
            attempt += 1
            if attempt > max_retries:
                logger.warning("Giving up on order number after %d conflicts", attempt)
                raise
            logger.info("Order number %s taken, re-allocating (attempt %d/%d)", order.order_number, attempt, max_retries)
            continue
        logger.info("Created order %s for user=%s", order.order_number, order.user)
        return order

"""
Async Postgres: orders (current state per order) + order_history (archive of delivered orders).
State changes run in a single transaction: lock the order row, check the expected state, update.
"""
import json
from datetime import datetime

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from mensajero.config import settings
from mensajero.geo import Location
from mensajero.models import Order
from mensajero.order_state import OrderState
from mensajero.store import OrderStore

_pool: asyncpg.Pool | None = None

_ORDER_COLUMNS = """
    order_id, items, pickup_lat, pickup_lng, dropoff_lat, dropoff_lng,
    state, courier_id, road_distance_km, delivery_price, created_at, updated_at
"""


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
                seq BIGSERIAL,
                order_id VARCHAR(255) PRIMARY KEY,
                items JSONB NOT NULL DEFAULT '[]',
                pickup_lat DOUBLE PRECISION NOT NULL,
                pickup_lng DOUBLE PRECISION NOT NULL,
                dropoff_lat DOUBLE PRECISION NOT NULL,
                dropoff_lng DOUBLE PRECISION NOT NULL,
                state VARCHAR(20) NOT NULL,
                courier_id VARCHAR(255),
                road_distance_km DOUBLE PRECISION,
                delivery_price DOUBLE PRECISION,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_state_seq
            ON orders(state, seq);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_history (
                order_id VARCHAR(255) PRIMARY KEY,
                courier_id VARCHAR(255),
                payload JSONB NOT NULL,
                delivered_at TIMESTAMPTZ,
                archived_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)


def _row_to_order(row: asyncpg.Record) -> Order:
    return Order(
        id=row["order_id"],
        items=json.loads(row["items"]) if row["items"] else [],
        pickup_location=Location(lat=row["pickup_lat"], lng=row["pickup_lng"]),
        dropoff_location=Location(lat=row["dropoff_lat"], lng=row["dropoff_lng"]),
        state=OrderState(row["state"]),
        courier_id=row["courier_id"],
        road_distance_km=row["road_distance_km"],
        delivery_price=row["delivery_price"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresOrderStore(OrderStore):
    """OrderStore over the orders table; per-order exclusion comes from SELECT ... FOR UPDATE."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get(self, order_id: str) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE order_id = $1;",
                order_id,
            )
        return _row_to_order(row) if row else None

    async def insert(self, order: Order) -> bool:
        async with self._pool.acquire() as conn:
            try:
                await conn.execute(
                    f"""
                    INSERT INTO orders ({_ORDER_COLUMNS})
                    VALUES ($1, $2::jsonb, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12);
                    """,
                    order.id,
                    json.dumps(order.items),
                    order.pickup_location.lat,
                    order.pickup_location.lng,
                    order.dropoff_location.lat,
                    order.dropoff_location.lng,
                    order.state.value,
                    order.courier_id,
                    order.road_distance_km,
                    order.delivery_price,
                    order.created_at,
                    order.updated_at,
                )
            except UniqueViolationError:
                return False
        return True

    async def compare_and_swap(self, order_id: str, expected_state: OrderState, order: Order) -> bool:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT state FROM orders WHERE order_id = $1 FOR UPDATE;",
                    order_id,
                )
                if row is None or row["state"] != expected_state.value:
                    return False
                await conn.execute(
                    """
                    UPDATE orders
                    SET state = $2, courier_id = $3, road_distance_km = $4,
                        delivery_price = $5, updated_at = $6
                    WHERE order_id = $1;
                    """,
                    order_id,
                    order.state.value,
                    order.courier_id,
                    order.road_distance_km,
                    order.delivery_price,
                    order.updated_at,
                )
        return True

    async def list_by_state(self, state: OrderState) -> list[Order]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE state = $1 ORDER BY seq ASC;",
                state.value,
            )
        return [_row_to_order(r) for r in rows]

    async def count(self) -> int:
        async with self._pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM orders;")


async def insert_history(pool: asyncpg.Pool, order: dict) -> bool:
    """
    Archive one delivered order (as JSON). Idempotent on order_id.
    Returns True if inserted, False if it was already archived.
    """
    delivered_at = order.get("updated_at")
    async with pool.acquire() as conn:
        result = await conn.execute(
            """
            INSERT INTO order_history (order_id, courier_id, payload, delivered_at)
            VALUES ($1, $2, $3::jsonb, $4::timestamptz)
            ON CONFLICT (order_id) DO NOTHING;
            """,
            order["id"],
            order.get("courier_id"),
            json.dumps(order),
            datetime.fromisoformat(delivered_at) if delivered_at else None,
        )
    return result == "INSERT 0 1"

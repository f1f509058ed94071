import json
from datetime import datetime, timezone

import pytest

from mensajero.db import _row_to_order, insert_history
from mensajero.order_state import OrderState

from conftest import DROPOFF, PICKUP


class FakeConnection:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def execute(self, sql, *args):
        self.calls.append((sql, args))
        return self.result


class FakePool:
    """Stands in for asyncpg.Pool: acquire() yields the one connection."""

    def __init__(self, result="INSERT 0 1"):
        self.conn = FakeConnection(result)

    def acquire(self):
        pool = self

        class _Acquire:
            async def __aenter__(self):
                return pool.conn

            async def __aexit__(self, *exc):
                return False

        return _Acquire()


def _row(**overrides) -> dict:
    row = {
        "order_id": "ped-3",
        "items": json.dumps([{"sku": "PAN-01", "qty": 2}]),
        "pickup_lat": PICKUP.lat,
        "pickup_lng": PICKUP.lng,
        "dropoff_lat": DROPOFF.lat,
        "dropoff_lng": DROPOFF.lng,
        "state": "IN_TRANSIT",
        "courier_id": "c-7",
        "road_distance_km": 1.4,
        "delivery_price": 85.0,
        "created_at": datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 3, 1, 12, 20, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


def test_row_to_order_maps_columns():
    order = _row_to_order(_row())
    assert order.id == "ped-3"
    assert order.items == [{"sku": "PAN-01", "qty": 2}]
    assert order.pickup_location == PICKUP
    assert order.dropoff_location == DROPOFF
    assert order.state == OrderState.IN_TRANSIT
    assert order.courier_id == "c-7"
    assert order.road_distance_km == 1.4
    assert order.delivery_price == 85.0
    assert order.updated_at == datetime(2026, 3, 1, 12, 20, tzinfo=timezone.utc)


def test_row_to_order_without_items_or_courier():
    order = _row_to_order(_row(items=None, state="AVAILABLE", courier_id=None, delivery_price=None))
    assert order.items == []
    assert order.state == OrderState.AVAILABLE
    assert order.courier_id is None
    assert order.delivery_price is None


@pytest.mark.asyncio
async def test_insert_history_writes_payload_and_delivery_time():
    pool = FakePool()
    order = {"id": "ped-3", "courier_id": "c-7", "state": "DELIVERED", "updated_at": "2026-03-01T12:40:00Z"}

    assert await insert_history(pool, order) is True

    [(sql, args)] = pool.conn.calls
    assert "ON CONFLICT (order_id) DO NOTHING" in sql
    order_id, courier_id, payload, delivered_at = args
    assert (order_id, courier_id) == ("ped-3", "c-7")
    assert json.loads(payload) == order
    assert delivered_at == datetime(2026, 3, 1, 12, 40, tzinfo=timezone.utc)
    assert delivered_at.tzinfo is not None


@pytest.mark.asyncio
async def test_insert_history_reports_already_archived():
    pool = FakePool(result="INSERT 0 0")
    assert await insert_history(pool, {"id": "ped-3"}) is False
    [(_, args)] = pool.conn.calls
    assert args[1] is None
    assert args[3] is None

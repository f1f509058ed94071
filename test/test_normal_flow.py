#!/usr/bin/env python3
"""
Scenario — Normal courier flow against a running deployment.

Place an order, two couriers race to claim it, the winner pings its way
from far away -> pickup -> drop-off.

Expect:
- Exactly one claim returns 200, the other 409
- Pings move the order AVAILABLE -> ASSIGNED -> IN_TRANSIT -> DELIVERED
- After the worker runs: the order is in order_history

Run: python test/test_normal_flow.py
Requires: API (STORE_BACKEND=postgres) and worker running, Redis, Postgres.
"""
import asyncio
import os
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

# test/ directory on path so _helper is found (avoid "test" package - shadows stdlib)
_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from _helper import call, fetch_history

PICKUP = {"lat": 23.1136, "lng": -82.3666}
DROPOFF = {"lat": 23.1200, "lng": -82.3700}
FAR_AWAY = {"lat": 23.1016, "lng": -82.3666}


def main() -> None:
    order_id = f"ped-test-{uuid.uuid4().hex[:12]}"
    print(f"Order ID: {order_id}")
    ok = True

    status, body = call("POST", "/orders", {
        "id": order_id,
        "items": [{"nombre": "Pizza", "cantidad": 1}],
        "pickup_location": PICKUP,
        "dropoff_location": DROPOFF,
    })
    if status != 201:
        print(f"  FAIL create: status={status} body={body}")
        sys.exit(1)
    print(f"  created: state={body['state']} price={body.get('delivery_price')}")

    with ThreadPoolExecutor(max_workers=2) as pool:
        claims = list(pool.map(
            lambda courier: call("POST", f"/orders/{order_id}/claim", {"courier_id": courier}),
            ["courier-a", "courier-b"],
        ))
    statuses = sorted(s for s, _ in claims)
    if statuses != [200, 409]:
        print(f"  FAIL: expected one 200 and one 409 for concurrent claims, got {statuses}")
        ok = False
    else:
        winner = next(b for s, b in claims if s == 200)["courier_id"]
        print(f"  claim race won by {winner}")

    for label, point, expected in [
        ("far away", FAR_AWAY, "ASSIGNED"),
        ("pickup", PICKUP, "IN_TRANSIT"),
        ("drop-off", DROPOFF, "DELIVERED"),
    ]:
        status, body = call("POST", f"/orders/{order_id}/location", point)
        if status != 200 or body.get("state") != expected:
            print(f"  FAIL ping at {label}: status={status} body={body} (expected {expected})")
            ok = False
        else:
            print(f"  ping at {label}: {expected} (pickup {body['distance_to_pickup']:.0f} m, drop-off {body['distance_to_dropoff']:.0f} m)")

    print("Waiting 5s for worker to archive ...")
    time.sleep(5)
    history = asyncio.run(fetch_history(order_id))
    if history is None:
        print("  FAIL: order not archived in order_history")
        ok = False
    else:
        print(f"  archived: {history}")

    if ok:
        print("Scenario — Normal courier flow: PASSED")
    else:
        sys.exit(1)


if __name__ == "__main__":
    main()

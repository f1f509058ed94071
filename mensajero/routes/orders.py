import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mensajero.errors import RoutingError
from mensajero.geo import Location
from mensajero.lifecycle import OrderLifecycleManager
from mensajero.models import Order
from mensajero.order_state import OrderState
from mensajero.routes.deps import get_manager, get_routing
from mensajero.routing import RoutingClient, quote_delivery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderBody(BaseModel):
    id: str = Field(..., min_length=1, description="Order id chosen by the client")
    items: list[Any] = Field(default_factory=list, description="Product descriptors, stored as-is")
    pickup_location: Location = Field(..., description="Sale point")
    dropoff_location: Location = Field(..., description="Delivery point")


class ClaimBody(BaseModel):
    courier_id: str = Field(..., min_length=1)


def _order_response(order: Order, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=order.model_dump(mode="json"))


@router.post("")
async def create_order(
    body: CreateOrderBody,
    manager: OrderLifecycleManager = Depends(get_manager),
    routing: RoutingClient | None = Depends(get_routing),
) -> JSONResponse:
    """Place an order. Road distance and price are filled in when routing is configured."""
    road_distance_km = None
    delivery_price = None
    if routing is not None and routing.configured:
        try:
            route = await routing.get_route(body.pickup_location, body.dropoff_location)
            road_distance_km = round(route.distance_km, 3)
            delivery_price = quote_delivery(route)
        except RoutingError as e:
            logger.warning("Pricing skipped for order_id=%s: %s", body.id, e)

    order = await manager.create_order(
        body.id,
        body.items,
        body.pickup_location,
        body.dropoff_location,
        road_distance_km=road_distance_km,
        delivery_price=delivery_price,
    )
    return _order_response(order, status_code=201)


@router.get("")
async def list_orders(
    state: OrderState = Query(default=OrderState.AVAILABLE),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    orders = await manager.list_by_state(state)
    return JSONResponse(
        status_code=200,
        content=[o.model_dump(mode="json") for o in orders],
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    return _order_response(await manager.get_order(order_id))


@router.post("/{order_id}/claim")
async def claim_order(
    order_id: str,
    body: ClaimBody,
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    """Courier takes an AVAILABLE order. Only the first of concurrent claims wins; the rest get 409."""
    return _order_response(await manager.claim(order_id, body.courier_id))


@router.post("/{order_id}/in-transit")
async def mark_in_transit(
    order_id: str,
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    return _order_response(await manager.mark_in_transit(order_id))


@router.post("/{order_id}/delivered")
async def mark_delivered(
    order_id: str,
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    return _order_response(await manager.mark_delivered(order_id))


@router.post("/{order_id}/location")
async def report_location(
    order_id: str,
    body: Location,
    manager: OrderLifecycleManager = Depends(get_manager),
) -> JSONResponse:
    """Courier position ping. May advance the order when inside the pickup or drop-off geofence."""
    report = await manager.report_location(order_id, body)
    return JSONResponse(status_code=200, content=report.model_dump(mode="json"))

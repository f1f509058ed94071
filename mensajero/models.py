from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mensajero.geo import Location
from mensajero.order_state import OrderState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(BaseModel):
    """
    One delivery order. Immutable snapshot: transitions build a new one with
    model_copy(update=...).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    items: list[Any] = Field(default_factory=list)  # opaque product descriptors
    pickup_location: Location
    dropoff_location: Location
    state: OrderState = OrderState.AVAILABLE
    courier_id: str | None = None
    road_distance_km: float | None = None
    delivery_price: float | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LocationReport(BaseModel):
    state: OrderState
    distance_to_pickup: float  # meters
    distance_to_dropoff: float  # meters

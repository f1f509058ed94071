"""
Order Lifecycle Manager: AVAILABLE -> ASSIGNED -> IN_TRANSIT -> DELIVERED.

Every read-then-write goes through OrderStore.compare_and_swap, so two
requests racing on the same order serialize on that order's lock and only
the first one wins. Courier location pings can advance the order when the
courier enters the pickup or drop-off geofence.
"""
import logging
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn

from mensajero.errors import DuplicateIdError, InvalidTransitionError, OrderNotFoundError
from mensajero.geo import ARRIVAL_THRESHOLD_METERS, Location, haversine_meters
from mensajero.metrics import (
    archive_failures_total,
    location_reports_total,
    order_transitions_rejected_total,
    order_transitions_total,
    orders_created_total,
)
from mensajero.models import LocationReport, Order, utcnow
from mensajero.order_state import OrderState, is_valid_transition
from mensajero.store import OrderStore

logger = logging.getLogger(__name__)

Archiver = Callable[[Order], Awaitable[None]]


class OrderLifecycleManager:
    def __init__(
        self,
        store: OrderStore,
        archiver: Archiver | None = None,
        arrival_threshold_meters: float = ARRIVAL_THRESHOLD_METERS,
    ):
        self.store = store
        self.archiver = archiver
        self.arrival_threshold_meters = arrival_threshold_meters

    async def create_order(
        self,
        order_id: str,
        items: list[Any],
        pickup_location: Location,
        dropoff_location: Location,
        *,
        road_distance_km: float | None = None,
        delivery_price: float | None = None,
    ) -> Order:
        order = Order(
            id=order_id,
            items=list(items),
            pickup_location=pickup_location,
            dropoff_location=dropoff_location,
            road_distance_km=road_distance_km,
            delivery_price=delivery_price,
        )
        if not await self.store.insert(order):
            raise DuplicateIdError(order_id)
        orders_created_total.inc()
        logger.info("Created order_id=%s (%d items)", order_id, len(order.items))
        return order

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_by_state(self, state: OrderState) -> list[Order]:
        return await self.store.list_by_state(state)

    async def claim(self, order_id: str, courier_id: str) -> Order:
        return await self._transition(order_id, OrderState.ASSIGNED, courier_id=courier_id)

    async def mark_in_transit(self, order_id: str) -> Order:
        return await self._transition(order_id, OrderState.IN_TRANSIT)

    async def mark_delivered(self, order_id: str) -> Order:
        order = await self._transition(order_id, OrderState.DELIVERED)
        await self._archive(order)
        return order

    async def report_location(self, order_id: str, current_location: Location) -> LocationReport:
        """
        Distances (meters) from current_location to pickup and drop-off. At most
        one geofence transition per ping, decided from the state read here.
        """
        location_reports_total.inc()
        order = await self.get_order(order_id)
        to_pickup = haversine_meters(current_location, order.pickup_location)
        to_dropoff = haversine_meters(current_location, order.dropoff_location)

        target = None
        if order.state == OrderState.ASSIGNED and to_pickup <= self.arrival_threshold_meters:
            target = OrderState.IN_TRANSIT
        elif order.state == OrderState.IN_TRANSIT and to_dropoff <= self.arrival_threshold_meters:
            target = OrderState.DELIVERED

        if target is not None:
            try:
                order = await self._transition(order_id, target, trigger="geofence", current=order)
            except InvalidTransitionError:
                # another request moved the order first; report what it is now
                order = await self.get_order(order_id)
            else:
                if target == OrderState.DELIVERED:
                    await self._archive(order)

        return LocationReport(
            state=order.state,
            distance_to_pickup=to_pickup,
            distance_to_dropoff=to_dropoff,
        )

    async def _transition(
        self,
        order_id: str,
        target: OrderState,
        *,
        trigger: str = "manual",
        current: Order | None = None,
        courier_id: str | None = None,
    ) -> Order:
        order = current or await self.get_order(order_id)
        if not is_valid_transition(order.state, target):
            self._reject(order, target)

        changes: dict[str, Any] = {"state": target, "updated_at": utcnow()}
        if courier_id is not None:
            changes["courier_id"] = courier_id
        updated = order.model_copy(update=changes)

        if not await self.store.compare_and_swap(order_id, order.state, updated):
            fresh = await self.get_order(order_id)
            self._reject(fresh, target)

        order_transitions_total.labels(
            from_state=order.state.value, to_state=target.value, trigger=trigger
        ).inc()
        logger.info(
            "order_id=%s %s -> %s (%s)", order_id, order.state.value, target.value, trigger
        )
        return updated

    def _reject(self, order: Order, target: OrderState) -> NoReturn:
        order_transitions_rejected_total.labels(
            current_state=order.state.value, attempted_state=target.value
        ).inc()
        logger.info(
            "Rejected order_id=%s %s -> %s", order.id, order.state.value, target.value
        )
        raise InvalidTransitionError(order.id, order.state, target)

    async def _archive(self, order: Order) -> None:
        """Best-effort: the DELIVERED state is already committed and stays committed."""
        if self.archiver is None:
            return
        try:
            await self.archiver(order)
        except Exception:
            archive_failures_total.inc()
            logger.exception("Archival failed for delivered order_id=%s", order.id)

"""
OpenRouteService directions client: road distance, duration and geometry
between two points, plus delivery pricing from the road distance.
"""
import logging
from typing import Any

import httpx
from pydantic import BaseModel

from mensajero.config import settings
from mensajero.errors import RoutingError
from mensajero.geo import Location

logger = logging.getLogger(__name__)


class Route(BaseModel):
    distance_m: float
    duration_s: float
    geometry: Any = None  # encoded polyline as returned by the provider

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000


class RoutingClient:
    """Client for the driving-car directions endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openroute_api_key
        self.url = url or settings.openroute_url
        self.timeout = timeout or settings.routing_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def get_route(self, origin: Location, destination: Location) -> Route:
        if not self.configured:
            logger.error("Routing API key not configured")
            raise RoutingError("routing API key not configured", status_code=500)

        body = {
            # provider expects [lng, lat]
            "coordinates": [
                [origin.lng, origin.lat],
                [destination.lng, destination.lat],
            ],
            "instructions": False,
            "geometry": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=body, headers=self._get_headers())
        except httpx.HTTPError as e:
            logger.error("Routing request failed: %s", e)
            raise RoutingError(f"routing request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            logger.error("Routing provider error %s: %s", response.status_code, data)
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                error = error.get("message")
            raise RoutingError(error or "routing service error", status_code=response.status_code)

        try:
            route = data["routes"][0]
            result = Route(
                distance_m=route["summary"]["distance"],
                duration_s=route["summary"]["duration"],
                geometry=route.get("geometry"),
            )
        except (KeyError, IndexError, TypeError) as e:
            logger.error("Unexpected routing response: %s", data)
            raise RoutingError("unexpected routing response") from e

        logger.info("Route computed: %.2f km", result.distance_km)
        return result


def quote_delivery(
    route: Route,
    base_fee: float | None = None,
    per_km: float | None = None,
) -> float:
    """Delivery price: base fee plus a per-kilometre rate on the road distance."""
    base_fee = settings.base_delivery_fee if base_fee is None else base_fee
    per_km = settings.price_per_km if per_km is None else per_km
    return round(base_fee + per_km * route.distance_km, 2)

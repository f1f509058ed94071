from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mensajero.errors import RoutingError
from mensajero.geo import Location
from mensajero.routes.deps import get_routing
from mensajero.routing import RoutingClient

router = APIRouter(tags=["routing"])


class RouteBody(BaseModel):
    origin: Location = Field(..., description="Start of the route")
    destination: Location = Field(..., description="End of the route")


@router.post("/route")
async def compute_route(
    body: RouteBody,
    routing: RoutingClient | None = Depends(get_routing),
) -> JSONResponse:
    """Road distance (m), duration (s) and geometry between origin and destination."""
    if routing is None:
        raise RoutingError("routing API key not configured", status_code=500)
    route = await routing.get_route(body.origin, body.destination)
    return JSONResponse(
        status_code=200,
        content={
            "distance": route.distance_m,
            "duration": route.duration_s,
            "geometry": route.geometry,
        },
    )

"""
Great-circle distance for geofence checks (haversine on a spherical Earth).
"""
import math

from pydantic import BaseModel, ConfigDict, Field

EARTH_RADIUS_METERS = 6_371_000
ARRIVAL_THRESHOLD_METERS = 30.0


class Location(BaseModel):
    """A point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


def haversine_meters(a: Location, b: Location) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    h = min(1.0, h)  # rounding can overshoot 1 for antipodal points
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c

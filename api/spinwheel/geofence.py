import math
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Location, LocationCampaign

EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class GeofenceResult:
    valid: bool
    message: str
    found: bool = True
    distance_meters: float | None = None
    allowed_radius: int | None = None


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def check_within_radius(user_lat: float, user_lon: float, location: Location) -> GeofenceResult:
    distance = haversine_distance(user_lat, user_lon, location.latitude, location.longitude)
    if distance <= location.radius_meters:
        return GeofenceResult(
            valid=True,
            message="Location verified successfully",
            distance_meters=distance,
            allowed_radius=location.radius_meters,
        )
    return GeofenceResult(
        valid=False,
        message=(
            f"You must be within {location.radius_meters}m of the participating store. "
            f"You are {distance:.0f}m away."
        ),
        distance_meters=distance,
        allowed_radius=location.radius_meters,
    )


def verify_location(db: Session, user_lat: float, user_lon: float, location_id: uuid.UUID) -> GeofenceResult:
    location = db.get(Location, location_id)
    if location is None or not location.is_active:
        return GeofenceResult(valid=False, found=False, message="Location not found or inactive")
    return check_within_radius(user_lat, user_lon, location)


def list_locations(
    db: Session,
    campaign_id: uuid.UUID | None = None,
    state: str | None = None,
    city: str | None = None,
    lat: float | None = None,
    lon: float | None = None,
) -> list[tuple[Location, float | None]]:
    """Active locations for the picker, nearest first when coordinates are given."""
    stmt = select(Location).where(Location.is_active.is_(True))
    if state:
        stmt = stmt.where(Location.state.ilike(f"%{state}%"))
    if city:
        stmt = stmt.where(Location.city.ilike(f"%{city}%"))
    if campaign_id is not None:
        mapped = select(LocationCampaign.location_id).where(LocationCampaign.campaign_id == campaign_id)
        stmt = stmt.where(Location.id.in_(mapped))
    locations = db.scalars(stmt.order_by(Location.name)).all()

    if lat is None or lon is None:
        return [(loc, None) for loc in locations]
    with_distance = [
        (loc, haversine_distance(lat, lon, loc.latitude, loc.longitude)) for loc in locations
    ]
    with_distance.sort(key=lambda pair: pair[1])
    return with_distance


def nearby_locations(db: Session, lat: float, lon: float) -> list[tuple[Location, float]]:
    """Active locations whose geofence contains the given point."""
    return [
        (loc, dist)
        for loc, dist in list_locations(db, lat=lat, lon=lon)
        if dist is not None and dist <= loc.radius_meters
    ]

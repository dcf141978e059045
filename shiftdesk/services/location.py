from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.models import LocationZone


class Zone(Protocol):
    name: str
    lat: float
    lng: float
    radius_m: float


@dataclass(frozen=True)
class GeofenceResult:
    is_match: bool
    zone_name: str | None
    distance_m: float | None
    radius_m: float | None = None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    earth_radius_m = 6371000.0

    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return earth_radius_m * c


def resolve_geofence(lat: float, lng: float, zones: Iterable[Zone]) -> GeofenceResult:
    """Pick the nearest zone whose radius contains the point.

    With no containing zone the nearest zone overall is reported with its
    distance so the caller can tell the member how far off they are.
    """
    closest_zone: Zone | None = None
    closest_distance: float | None = None
    matched_zone: Zone | None = None
    matched_distance: float | None = None

    for zone in zones:
        zone_distance = distance_m(lat, lng, zone.lat, zone.lng)

        if closest_distance is None or zone_distance < closest_distance:
            closest_distance = zone_distance
            closest_zone = zone

        if zone_distance <= float(zone.radius_m):
            if matched_distance is None or zone_distance < matched_distance:
                matched_distance = zone_distance
                matched_zone = zone

    if matched_zone is not None:
        return GeofenceResult(
            is_match=True,
            zone_name=matched_zone.name,
            distance_m=matched_distance,
            radius_m=float(matched_zone.radius_m),
        )
    if closest_zone is None:
        return GeofenceResult(is_match=False, zone_name=None, distance_m=None)
    return GeofenceResult(
        is_match=False,
        zone_name=closest_zone.name,
        distance_m=closest_distance,
        radius_m=float(closest_zone.radius_m),
    )


def load_active_zones(db: Session) -> list[LocationZone]:
    return list(
        db.scalars(
            select(LocationZone).where(LocationZone.is_active.is_(True)).order_by(LocationZone.id.asc())
        ).all()
    )

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = 111000.0


@dataclass(frozen=True)
class Rectangle:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(d_lng / 2) ** 2
    # float error can push `a` a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def search_rectangle(lat: float, lng: float, radius_m: float) -> Rectangle:
    """
    Cheap pre-filter box around a point.

    1 deg latitude ~ 111 000 m; 1 deg longitude ~ 111 000 * cos(latitude) m.
    """
    d_lat = radius_m / METERS_PER_DEGREE
    cos_lat = math.cos(math.radians(lat))
    # at the poles a longitude degree has no width; take the whole band
    d_lng = 180.0 if cos_lat < 1e-12 else radius_m / (METERS_PER_DEGREE * cos_lat)
    return Rectangle(
        min_lat=lat - d_lat,
        max_lat=lat + d_lat,
        min_lng=lng - d_lng,
        max_lng=lng + d_lng,
    )


def is_valid_coordinate(lat, lng) -> bool:
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180

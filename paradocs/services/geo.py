"""
geo.py — Great-circle helpers shared by clustering, the registry and the linker.

All distances are kilometres on a sphere of radius 6371 km.
"""

from __future__ import annotations

import math
from typing import NamedTuple

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def wraps(self) -> bool:
        """True when the box crosses the antimeridian (min_lng > max_lng)."""
        return self.min_lng > self.max_lng

    def contains(self, lat: float, lng: float) -> bool:
        if lat < self.min_lat or lat > self.max_lat:
            return False
        if self.wraps:
            return lng >= self.min_lng or lng <= self.max_lng
        return self.min_lng <= lng <= self.max_lng


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def lng_delta_deg(lat: float, radius_km: float) -> float:
    """Longitude half-width (degrees) covering radius_km at this latitude."""
    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6:
        return 180.0
    return min(180.0, radius_km / (KM_PER_DEGREE_LAT * cos_lat))


def bounding_box(lat: float, lng: float, radius_km: float) -> BoundingBox:
    """
    Coarse box that contains every point within radius_km of (lat, lng).

    Used only as a prefilter before the exact haversine check. Longitude
    bounds are normalised to [-180, 180]; a box crossing the antimeridian
    comes back with min_lng > max_lng.
    """
    d_lat = radius_km / KM_PER_DEGREE_LAT
    min_lat = max(-90.0, lat - d_lat)
    max_lat = min(90.0, lat + d_lat)

    # Near the poles the box spans every longitude
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    # Widen using the box edge nearest the pole, where degrees of longitude are shortest
    d_lng = lng_delta_deg(max(abs(min_lat), abs(max_lat)), radius_km)
    if d_lng >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lng = _wrap_lng(lng - d_lng)
    max_lng = _wrap_lng(lng + d_lng)
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)


def _wrap_lng(lng: float) -> float:
    if lng < -180.0:
        return lng + 360.0
    if lng > 180.0:
        return lng - 360.0
    return lng

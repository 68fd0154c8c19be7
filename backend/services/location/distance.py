"""
Distance Calculations for Location Services

Haversine formula for great-circle distance between two lat/lng points,
plus the time-overlap helper used when reconciling trips with timesheets.
"""

import math
from datetime import datetime
from typing import NamedTuple


EARTH_RADIUS_KM = 6371.0


class LatLng(NamedTuple):
    """Bare coordinate pair for callers that have no GeoLocation."""
    lat: float
    lng: float


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate great-circle distance between two points in kilometers.
    Uses the Haversine formula.
    """
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance(a, b) -> float:
    """
    Great-circle distance in meters between two points.

    Accepts anything with `lat` and `lng` attributes (GeoLocation, LatLng).
    """
    return haversine_km(a.lat, a.lng, b.lat, b.lng) * 1000.0


def within_radius(a, b, radius_m: float) -> bool:
    """True if b lies within radius_m meters of a."""
    return distance(a, b) <= radius_m


def overlap_minutes(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> float:
    """
    Minutes shared by the ranges [start_a, end_a] and [start_b, end_b].
    Zero when the ranges do not intersect.
    """
    overlap_start = max(start_a, start_b)
    overlap_end = min(end_a, end_b)

    if overlap_end <= overlap_start:
        return 0.0

    return (overlap_end - overlap_start).total_seconds() / 60.0

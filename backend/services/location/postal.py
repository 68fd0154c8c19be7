"""
Approximate Dutch Postal Code Geocoder

Offline fallback used when the live geocoders are unavailable, and the
location source for the trip matcher's proximity check.

Strategy:
    1. Two-digit prefix found in DUTCH_POSTAL_REGIONS -> city centroid ("region")
    2. Otherwise interpolate the 4-digit code across the country's
       bounding box ("approximate")
    3. Anything else -> None
"""

import re
from typing import Optional

from .types import (
    ACCURACY_APPROXIMATE,
    ACCURACY_REGION,
    SOURCE_LOOKUP_TABLE,
    GeoLocation,
)

# 4 digits + optional 2 letters, optionally separated by one space
POSTAL_CODE_PATTERN = re.compile(r"^\d{4}\s?[A-Za-z]{0,2}$")

# Postal code prefix -> (lat, lng) of the main city in that range
DUTCH_POSTAL_REGIONS = {
    # Amsterdam (1000-1199)
    "10": (52.3676, 4.9041),
    "11": (52.3676, 4.9041),
    # Almere
    "13": (52.3508, 5.2647),
    # Haarlem
    "20": (52.3874, 4.6462),
    # Leiden
    "23": (52.1601, 4.4970),
    # Den Haag (2500-2699)
    "25": (52.0705, 4.3007),
    "26": (52.0705, 4.3007),
    # Rotterdam (3000-3199)
    "30": (51.9244, 4.4777),
    "31": (51.9244, 4.4777),
    # Dordrecht
    "33": (51.7948, 4.6772),
    # Utrecht (3500-3699)
    "35": (52.0907, 5.1214),
    "36": (52.0907, 5.1214),
    # Amersfoort
    "38": (52.1561, 5.3878),
    # Middelburg
    "43": (51.4988, 3.6109),
    # Breda
    "48": (51.5719, 4.7683),
    # Tilburg (5000-5199)
    "50": (51.5555, 5.0913),
    "51": (51.5555, 5.0913),
    # 's-Hertogenbosch
    "52": (51.6998, 5.3049),
    # Eindhoven (5600-5799)
    "56": (51.4416, 5.4697),
    "57": (51.4416, 5.4697),
    # Maastricht
    "62": (50.8514, 5.6909),
    # Nijmegen
    "65": (51.8126, 5.8372),
    # Arnhem
    "68": (51.9851, 5.8987),
    # Apeldoorn
    "73": (52.2112, 5.9699),
    # Deventer
    "74": (52.2554, 6.1553),
    # Enschede
    "75": (52.2215, 6.8937),
    # Zwolle
    "80": (52.5168, 6.0830),
    # Leeuwarden
    "89": (53.2012, 5.7999),
    # Assen
    "94": (52.9925, 6.5649),
    # Groningen (9700-9899)
    "97": (53.2194, 6.5665),
    "98": (53.2194, 6.5665),
}

# Netherlands bounding box used for interpolation
LAT_MIN, LAT_MAX = 50.75, 53.5
LNG_MIN, LNG_MAX = 3.3, 7.2

POSTAL_CODE_MIN = 1000
POSTAL_CODE_MAX = 9999


def normalize_postal_code(code: str) -> str:
    """'1011 ab ' -> '1011AB'"""
    return re.sub(r"\s", "", code or "").upper()


def is_postal_code(text: str) -> bool:
    """True if text looks like a Dutch postal code (1011AB, 1011 AB, 1011)."""
    if not text:
        return False
    return bool(POSTAL_CODE_PATTERN.match(text.strip()))


def approximate_postal_location(code: Optional[str]) -> Optional[GeoLocation]:
    """
    Approximate coordinates for a Dutch postal code without any network call.

    Returns a GeoLocation with source "lookup_table", or None when the code
    has too few digits or falls outside the 1000-9999 range.
    """
    if not code:
        return None

    digits = re.sub(r"\D", "", code)
    if len(digits) < 2:
        return None

    coords = DUTCH_POSTAL_REGIONS.get(digits[:2])
    if coords:
        return GeoLocation(
            lat=coords[0],
            lng=coords[1],
            accuracy=ACCURACY_REGION,
            source=SOURCE_LOOKUP_TABLE,
        )

    # Very rough: treat the numeric code as a position along the country
    code_num = int(digits[:4])
    if code_num < POSTAL_CODE_MIN or code_num > POSTAL_CODE_MAX:
        return None

    normalized = (code_num - POSTAL_CODE_MIN) / (POSTAL_CODE_MAX + 1 - POSTAL_CODE_MIN)

    return GeoLocation(
        lat=LAT_MIN + normalized * (LAT_MAX - LAT_MIN),
        lng=LNG_MIN + normalized * (LNG_MAX - LNG_MIN),
        accuracy=ACCURACY_APPROXIMATE,
        source=SOURCE_LOOKUP_TABLE,
    )

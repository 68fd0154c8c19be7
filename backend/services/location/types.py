"""
Shared value types for Location Services.
"""

from dataclasses import dataclass, replace
from typing import Optional


# Accuracy levels, finest first
ACCURACY_EXACT = "exact"              # building / address
ACCURACY_APPROXIMATE = "approximate"  # postcode / street / city
ACCURACY_REGION = "region"            # coarse estimate

SOURCE_CACHE = "cache"
SOURCE_PDOK = "pdok"
SOURCE_NOMINATIM = "nominatim"
SOURCE_LOOKUP_TABLE = "lookup_table"


@dataclass(frozen=True)
class GeoLocation:
    """Result of every geocoding call."""

    lat: float
    lng: float
    accuracy: str
    source: str
    address: Optional[str] = None

    def with_source(self, source: str) -> "GeoLocation":
        return replace(self, source=source)

    def to_dict(self) -> dict:
        """Convert to a plain dictionary (useful for JSON serialisation)."""
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy,
            "source": self.source,
            "address": self.address,
        }

"""
Location Services Router

Endpoints for geocoding postal codes / addresses and maintaining the
geocode cache.

Endpoints:
    POST   /api/location/geocode        - Geocode a postal code or address
    POST   /api/location/distance       - Distance between two points
    GET    /api/location/cache/stats    - Cache size and hit rate
    POST   /api/location/cache/cleanup  - Drop expired cache entries now
    DELETE /api/location/cache          - Empty the cache
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from services.location.distance import LatLng, distance, within_radius
from services.location.geocoding import GeocodeResolver

logger = logging.getLogger(__name__)

router = APIRouter()


def get_geocoder(request: Request) -> GeocodeResolver:
    """The process-wide resolver created in main.lifespan"""
    geocoder = getattr(request.app.state, "geocoder", None)
    if geocoder is None:
        raise HTTPException(status_code=503, detail="Geocoder not initialised")
    return geocoder


# =============================================================================
# SCHEMAS
# =============================================================================

class GeocodeRequest(BaseModel):
    query: str
    kind: Literal["auto", "postal", "address"] = "auto"


class GeocodeResponse(BaseModel):
    success: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[str] = None
    source: Optional[str] = None
    address: Optional[str] = None


class Point(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class DistanceRequest(BaseModel):
    a: Point
    b: Point
    radius_m: Optional[float] = Field(default=None, ge=0)


class DistanceResponse(BaseModel):
    distance_m: float
    within_radius: Optional[bool] = None


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/geocode", response_model=GeocodeResponse)
async def geocode_endpoint(
    request: GeocodeRequest,
    geocoder: GeocodeResolver = Depends(get_geocoder),
):
    """
    Geocode a postal code or address.
    "No location found" is a normal response with success=false.
    """
    if request.kind == "postal":
        result = await geocoder.geocode_postal_code(request.query)
    elif request.kind == "address":
        result = await geocoder.geocode_address(request.query)
    else:
        result = await geocoder.geocode(request.query)

    if result:
        return GeocodeResponse(success=True, **result.to_dict())

    return GeocodeResponse(success=False)


@router.post("/distance", response_model=DistanceResponse)
async def distance_endpoint(request: DistanceRequest):
    a = LatLng(request.a.lat, request.a.lng)
    b = LatLng(request.b.lat, request.b.lng)

    response = DistanceResponse(distance_m=round(distance(a, b), 1))
    if request.radius_m is not None:
        response.within_radius = within_radius(a, b, request.radius_m)
    return response


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(geocoder: GeocodeResolver = Depends(get_geocoder)):
    return geocoder.cache_stats()


@router.post("/cache/cleanup")
async def cache_cleanup(geocoder: GeocodeResolver = Depends(get_geocoder)):
    removed = geocoder.cleanup_cache()
    logger.info(f"Manual geocode cache cleanup removed {removed} entries")
    return {"removed": removed}


@router.delete("/cache")
async def cache_clear(geocoder: GeocodeResolver = Depends(get_geocoder)):
    geocoder.clear_cache()
    logger.info("Geocode cache cleared")
    return {"cleared": True}

"""
Geocoding Service for Location Services

Primary:  PDOK Locatieserver (Dutch government, free, no API key, authoritative)
Fallback: OpenStreetMap Nominatim (free, 1 request/second fair-use policy)
Last:     Static postal code lookup table (postal codes only, no network)

Strategy:
    Postal codes:  cache -> PDOK -> lookup table / interpolation
    Addresses:     cache -> PDOK -> Nominatim
    Any result is written back to the cache before it is returned.
    If all fail -> return None

Providers never raise. Timeouts, HTTP errors and malformed payloads are
logged as warnings and treated as "no result" so the chain can continue.
"""

import asyncio
import logging
import os
import re
import time
from typing import Awaitable, Callable, Optional

import httpx

from . import distance as _distance
from .cache import KIND_ADDRESS, KIND_POSTAL, GeocodeCache, cache_key
from .postal import approximate_postal_location, is_postal_code, normalize_postal_code
from .types import (
    ACCURACY_APPROXIMATE,
    ACCURACY_EXACT,
    ACCURACY_REGION,
    SOURCE_NOMINATIM,
    SOURCE_PDOK,
    GeoLocation,
)

logger = logging.getLogger(__name__)

# PDOK Locatieserver
PDOK_BASE = "https://api.pdok.nl/bzk/locatieserver/search/v3_1/free"

# Nominatim
NOMINATIM_BASE = "https://nominatim.openstreetmap.org/search"
NOMINATIM_RATE_LIMIT_MS = int(os.environ.get("NOMINATIM_RATE_LIMIT_MS", "1000"))

GEOCODE_TIMEOUT = float(os.environ.get("GEOCODE_TIMEOUT", "5"))
USER_AGENT = os.environ.get("GEOCODE_USER_AGENT", "Fleetsheet/1.0 (support@fleetsheet.nl)")

# PDOK returns centroide_ll as "POINT(lng lat)"
_WKT_POINT = re.compile(r"POINT\(([^ ]+) ([^)]+)\)")

PDOK_ACCURACY = {
    "adres": ACCURACY_EXACT,
    "postcode": ACCURACY_APPROXIMATE,
    "weg": ACCURACY_APPROXIMATE,
    "woonplaats": ACCURACY_APPROXIMATE,
}

NOMINATIM_EXACT_TYPES = {"house", "building", "address"}
NOMINATIM_APPROXIMATE_TYPES = {
    "postcode", "city", "town", "village",
    "suburb", "neighbourhood", "residential", "road",
}


class RateLimiter:
    """
    Keeps calls at least min_interval seconds apart within this process.

    A single shared "last call" timestamp; the lock makes concurrent
    coroutines queue up instead of all passing the check at once.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call = self._clock()


def _pdok_accuracy(doc_type: Optional[str]) -> str:
    return PDOK_ACCURACY.get(doc_type or "", ACCURACY_REGION)


def _nominatim_accuracy(place_type: Optional[str]) -> str:
    if place_type in NOMINATIM_EXACT_TYPES:
        return ACCURACY_EXACT
    if place_type in NOMINATIM_APPROXIMATE_TYPES:
        return ACCURACY_APPROXIMATE
    return ACCURACY_REGION


async def _get_json(client: httpx.AsyncClient, url: str, params: dict, provider: str, query: str):
    """GET url and decode JSON. Returns None (and logs) on any failure."""
    try:
        response = await client.get(
            url,
            params=params,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            timeout=GEOCODE_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()
    except httpx.TimeoutException:
        logger.warning(f"{provider} timeout for: {query}")
    except httpx.HTTPStatusError as e:
        logger.warning(f"{provider} API error {e.response.status_code} for: {query}")
    except httpx.HTTPError as e:
        logger.warning(f"{provider} request failed for '{query}': {e}")
    except ValueError:
        logger.warning(f"{provider} returned a non-JSON body for: {query}")
    return None


async def query_pdok(client: httpx.AsyncClient, query: str) -> Optional[GeoLocation]:
    """
    Query PDOK Locatieserver and return the top match.
    """
    params = {
        "q": query,
        "rows": "1",
        "fq": "type:postcode OR type:adres",
    }

    data = await _get_json(client, PDOK_BASE, params, "PDOK", query)
    if data is None:
        return None

    try:
        docs = data.get("response", {}).get("docs", [])
        if not docs:
            logger.info(f"PDOK: no matches for '{query}'")
            return None

        doc = docs[0]
        match = _WKT_POINT.match(doc.get("centroide_ll") or "")
        if not match:
            logger.warning(f"PDOK: unparseable centroid for '{query}': {doc.get('centroide_ll')!r}")
            return None

        return GeoLocation(
            lat=float(match.group(2)),
            lng=float(match.group(1)),
            accuracy=_pdok_accuracy(doc.get("type")),
            source=SOURCE_PDOK,
            address=doc.get("weergavenaam"),
        )
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"PDOK: malformed response for '{query}': {e}")
        return None


async def query_nominatim(client: httpx.AsyncClient, query: str) -> Optional[GeoLocation]:
    """
    Query OpenStreetMap Nominatim, restricted to the Netherlands.
    Caller is responsible for rate limiting.
    """
    params = {
        "q": f"{query}, Netherlands",
        "format": "json",
        "limit": "1",
        "countrycodes": "nl",
    }

    data = await _get_json(client, NOMINATIM_BASE, params, "Nominatim", query)
    if data is None:
        return None

    if not isinstance(data, list):
        logger.warning(f"Nominatim: unexpected payload for '{query}'")
        return None
    if not data:
        logger.info(f"Nominatim: no results for '{query}'")
        return None

    try:
        result = data[0]
        return GeoLocation(
            lat=float(result["lat"]),
            lng=float(result["lon"]),
            accuracy=_nominatim_accuracy(result.get("type")),
            source=SOURCE_NOMINATIM,
            address=result.get("display_name"),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Nominatim: malformed response for '{query}': {e}")
        return None


class GeocodeResolver:
    """
    Cache + provider chain. Create one per process and share it.

    The resolver owns its cache, its Nominatim rate limiter and (unless one
    is injected) its httpx.AsyncClient.
    """

    distance = staticmethod(_distance.distance)
    within_radius = staticmethod(_distance.within_radius)

    def __init__(
        self,
        cache: GeocodeCache,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.cache = cache
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=GEOCODE_TIMEOUT)
        self.rate_limiter = rate_limiter or RateLimiter(NOMINATIM_RATE_LIMIT_MS / 1000.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def geocode(self, query: str) -> Optional[GeoLocation]:
        """Geocode a postal code or a free-form address (auto-detected)."""
        if not query or not query.strip():
            return None

        cleaned = query.strip()
        if is_postal_code(cleaned):
            return await self.geocode_postal_code(cleaned)
        return await self.geocode_address(cleaned)

    async def geocode_postal_code(self, postal_code: str) -> Optional[GeoLocation]:
        if not is_postal_code(postal_code):
            return None

        code = normalize_postal_code(postal_code)
        key = cache_key(KIND_POSTAL, code)

        cached = self.cache.get(key)
        if cached:
            return cached

        result = await query_pdok(self.client, code)
        if result is None:
            result = approximate_postal_location(code)
            if result:
                logger.info(f"Postal code {code} resolved from lookup table ({result.accuracy})")

        if result:
            self.cache.set(key, result)
        else:
            logger.warning(f"Geocoding failed for postal code: {code}")
        return result

    async def geocode_address(self, address: str) -> Optional[GeoLocation]:
        if not address or not address.strip():
            return None

        address = address.strip()
        key = cache_key(KIND_ADDRESS, address)

        cached = self.cache.get(key)
        if cached:
            return cached

        result = await query_pdok(self.client, address)
        if result is None:
            await self.rate_limiter.wait()
            result = await query_nominatim(self.client, address)

        if result:
            self.cache.set(key, result)
        else:
            logger.warning(f"Geocoding failed for: {address}")
        return result

    # Cache maintenance

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup()

    def clear_cache(self) -> None:
        self.cache.clear()

"""
Fleetsheet - Geocoding and Trip/Timesheet Reconciliation API
"""

import asyncio
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers import location, trips
from services.location.background_task import start_cache_cleanup
from services.location.cache import GeocodeCache
from services.location.geocoding import GeocodeResolver

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
GEOCODE_CACHE_SIZE = int(os.environ.get("GEOCODE_CACHE_SIZE", "1000"))
GEOCODE_CACHE_TTL = float(os.environ.get("GEOCODE_CACHE_TTL", str(24 * 60 * 60)))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Fleetsheet starting up...")
    cache = GeocodeCache(max_size=GEOCODE_CACHE_SIZE, ttl_seconds=GEOCODE_CACHE_TTL)
    app.state.geocoder = GeocodeResolver(cache)
    cleanup_task = start_cache_cleanup(cache)
    app.state.cleanup_task = cleanup_task
    yield
    # Shutdown
    logger.info("Fleetsheet shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await app.state.geocoder.aclose()

app = FastAPI(
    title="Fleetsheet API",
    description="Geocoding and trip/timesheet reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(location.router, prefix="/api/location", tags=["Location"])
app.include_router(trips.router, prefix="/api/trips", tags=["Trips"])

@app.get("/")
async def root():
    return {"status": "ok", "service": "Fleetsheet API", "version": "1.0.0"}

@app.get("/health")
async def health():
    return {"status": "healthy"}

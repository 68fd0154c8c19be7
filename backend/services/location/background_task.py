"""
Location Background Task: Periodic Geocode Cache Cleanup

Started from the FastAPI lifespan in main.py and cancelled on shutdown.
Expired entries are already ignored on read; this sweep only bounds memory
held by entries nobody asks for again.
"""

import asyncio
import logging
import os

from .cache import GeocodeCache

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = float(os.environ.get("GEOCODE_CLEANUP_INTERVAL", "3600"))


def sweep_cache(cache: GeocodeCache) -> int:
    """Run one cleanup pass and log the outcome."""
    removed = cache.cleanup()
    if removed:
        logger.info(f"Geocode cache cleanup removed {removed} expired entries ({len(cache)} left)")
    else:
        logger.debug("Geocode cache cleanup: nothing expired")
    return removed


async def run_cache_cleanup(cache: GeocodeCache, interval: float = CLEANUP_INTERVAL_SECONDS):
    """
    Sweep the cache every `interval` seconds until cancelled.

    A failing sweep is logged and the loop keeps going.
    """
    logger.info(f"Geocode cache cleanup task started (every {interval:.0f}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                sweep_cache(cache)
            except Exception as e:
                logger.error(f"Geocode cache cleanup failed: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Geocode cache cleanup task stopped")
        raise


def start_cache_cleanup(cache: GeocodeCache, interval: float = CLEANUP_INTERVAL_SECONDS) -> asyncio.Task:
    """Schedule run_cache_cleanup on the running loop. Caller owns the task."""
    return asyncio.create_task(run_cache_cleanup(cache, interval), name="geocode-cache-cleanup")

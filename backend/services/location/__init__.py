"""
Location Services Module

Geocoding, distance calculations and the geocode cache.
Primary provider: PDOK Locatieserver (free, government, authoritative)
Fallback provider: OpenStreetMap Nominatim (free, rate-limited)
Last resort: static Dutch postal code lookup table

Usage:
    from services.location.geocoding import GeocodeResolver
    from services.location.distance import distance, within_radius
"""

# Offline reverse geocoding for Jharkhand and coordinate helpers

import math
import logging
from typing import Optional

from .models import LocationResult

logger = logging.getLogger(__name__)

# Approximate city centres with a match radius in degrees
JHARKHAND_CITIES = [
    {"name": "Ranchi", "lat": 23.3441, "lng": 85.3096, "radius": 0.5},
    {"name": "Dhanbad", "lat": 23.7957, "lng": 86.4304, "radius": 0.3},
    {"name": "Jamshedpur", "lat": 22.8046, "lng": 86.2029, "radius": 0.4},
    {"name": "Bokaro", "lat": 23.6693, "lng": 85.9512, "radius": 0.2},
    {"name": "Deoghar", "lat": 24.4823, "lng": 86.7042, "radius": 0.2},
]

MAP_CENTER = {"lat": 23.3441, "lng": 85.3096}  # Ranchi

def get_location_name(lat: float, lng: float) -> str:
    for city in JHARKHAND_CITIES:
        distance = math.hypot(lat - city["lat"], lng - city["lng"])
        if distance <= city["radius"]:
            return f"Near {city['name']}, Jharkhand"
    return f"{lat:.6f}, {lng:.6f} (Jharkhand)"

def reverse_geocode(lat: Optional[float], lng: Optional[float]) -> LocationResult:
    """Turn raw device coordinates into a LocationResult.

    Bad input does not raise. It yields the same fallback shape a failed
    device lookup produces, so the form can ask for a manual address.
    """
    if lat is None or lng is None:
        return LocationResult(address="Location unavailable", lat=0, lng=0,
                              error="Location information is unavailable")
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        logger.warning("Rejected out-of-range coordinates %s, %s", lat, lng)
        return LocationResult(address="Location unavailable", lat=0, lng=0,
                              error="Coordinates are out of range")
    return LocationResult(address=get_location_name(lat, lng), lat=lat, lng=lng)

def has_coordinates(location: Optional[dict]) -> bool:
    """0/0 is the 'no fix' placeholder, so it never goes on the map."""
    if not location:
        return False
    return location.get("lat", 0) != 0 and location.get("lng", 0) != 0

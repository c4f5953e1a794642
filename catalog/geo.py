"""
catalog/geo.py -- Spherical distance helpers for catalog location queries.

Distances use the haversine formula on a sphere whose radius depends on the
requested unit. The radii match the ones the storefront has always quoted:
3963.2 miles or 6378.1 kilometres.
"""

import math

EARTH_RADIUS = {
    "mi": 3963.2,
    "km": 6378.1,
}


def parse_latlng(value: str) -> tuple[float, float]:
    """Parse "lat,lng" into floats. Raises ValueError on anything else."""
    parts = value.split(",")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValueError("Please provide latitude and longitude in the format lat,lng.")
    lat, lng = float(parts[0]), float(parts[1])
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError("Latitude must be within [-90, 90] and longitude within [-180, 180].")
    return lat, lng


def radius_for(unit: str) -> float:
    try:
        return EARTH_RADIUS[unit]
    except KeyError:
        raise ValueError(f"Unit must be one of: {', '.join(sorted(EARTH_RADIUS))}") from None


def haversine(lat1: float, lng1: float, lat2: float, lng2: float, radius: float) -> float:
    """Great-circle distance between two points, in the radius' unit."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * radius * math.asin(min(1.0, math.sqrt(a)))

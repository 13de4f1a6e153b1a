# geo.py
"""
Great-circle distance helpers.

All distances are in meters. Coordinates are WGS84 degrees.
"""
import math
from typing import NamedTuple, Union

EARTH_RADIUS_M = 6371000


class GeoPoint(NamedTuple):
    """Immutable latitude/longitude pair in degrees."""
    lat: float
    lon: float


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> Union[int, float]:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance rounded to the nearest meter (NaN if any input is NaN)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + \
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    # Rounding can push a just past 1 for near-antipodal points
    if a > 1.0:
        a = 1.0
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    distance = EARTH_RADIUS_M * c
    if math.isnan(distance):
        return distance
    return round(distance)


def distance_between(a: GeoPoint, b: GeoPoint) -> Union[int, float]:
    """Distance in meters between two GeoPoints."""
    return calculate_distance(a.lat, a.lon, b.lat, b.lon)


def is_within_radius(center: GeoPoint, point: GeoPoint, radius_m: float) -> bool:
    return distance_between(center, point) <= radius_m


def format_distance(meters: float) -> str:
    """Human readable distance: "1.5 km" or "500 m"."""
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{round(meters)} m"

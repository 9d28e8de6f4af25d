import math
from typing import Tuple

EARTH_RADIUS_METERS = 6371000

def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points
    on the earth (specified in decimal degrees)
    using the Haversine formula.

    Args:
        lat1: Latitude of point 1
        lon1: Longitude of point 1
        lat2: Latitude of point 2
        lon2: Longitude of point 2

    Returns:
        Distance between the points in meters; NaN if any input is NaN or infinite
    """
    if not all(math.isfinite(v) for v in (lat1, lon1, lat2, lon2)):
        return math.nan

    # Convert decimal degrees to radians
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    # Haversine formula
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    if a > 1:
        a = 1.0  # rounding near antipodal points
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return c * EARTH_RADIUS_METERS

def is_within_geofence(lat: float, lon: float, center_lat: float, center_lon: float, radius: float) -> Tuple[bool, float]:
    """
    Check if a location (lat, lon) lies inside the circular geofence around (center_lat, center_lon).

    Non-finite coordinates are never within the geofence; a participant with
    a broken fix is classified as outside instead of failing the check.

    Args:
        lat: Latitude of point to check
        lon: Longitude of point to check
        center_lat: Latitude of the geofence center
        center_lon: Longitude of the geofence center
        radius: Geofence radius in meters

    Returns:
        Tuple of (is_within_geofence, distance)
    """
    try:
        distance = calculate_distance(lat, lon, center_lat, center_lon)
    except (TypeError, ValueError):
        return False, math.nan

    if not math.isfinite(distance) or radius is None or not math.isfinite(radius):
        return False, distance
    return distance <= radius, distance

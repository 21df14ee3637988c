"""
Geo math for Listing Alerts.

Great-circle distance and bearing between lat/lng points, plus a radius
check used by the detector and the matching engine.
"""

import math

# Earth's mean radius in meters
EARTH_RADIUS_M = 6371e3


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate distance in meters using the Haversine formula.

    Args:
        lat1, lng1: First point coordinates (degrees)
        lat2, lng2: Second point coordinates (degrees)

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def bearing_deg(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Initial great-circle bearing from point 1 to point 2.

    Returns:
        Bearing in degrees, normalized to [0, 360)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lng = math.radians(lng2 - lng1)

    y = math.sin(delta_lng) * math.cos(lat2_rad)
    x = (math.cos(lat1_rad) * math.sin(lat2_rad) -
         math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lng))

    return (math.degrees(math.atan2(y, x)) + 360) % 360


def is_within_radius(
    lat: float, lng: float,
    center_lat: float, center_lng: float,
    radius_m: float
) -> bool:
    """Check whether a point is inside or on the boundary of a circle."""
    return haversine_m(lat, lng, center_lat, center_lng) <= radius_m


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """Latitude in [-90, 90] and longitude in [-180, 180], both finite."""
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

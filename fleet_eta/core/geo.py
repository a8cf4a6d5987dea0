"""
Geospatial helper functions.

All inputs and outputs are in degrees and meters.
"""

from math import radians, degrees, sin, cos, sqrt, atan2, asin

# Earth's radius in meters
EARTH_RADIUS_METERS = 6371000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in meters
    """
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = radians(lat2 - lat1)
    delta_lon = radians(lon2 - lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing (forward azimuth) from the first point to the second.

    Returns:
        Bearing in degrees, normalized to [0, 360)
    """
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lon = radians(lon2 - lon1)

    y = sin(delta_lon) * cos(lat2_rad)
    x = cos(lat1_rad) * sin(lat2_rad) - sin(lat1_rad) * cos(lat2_rad) * cos(delta_lon)

    return (degrees(atan2(y, x)) + 360) % 360


def move_position(lat: float, lon: float, bearing: float, distance: float) -> tuple:
    """
    Project a point forward along a bearing by a distance.

    Args:
        lat, lon: Starting point
        bearing: Bearing in degrees
        distance: Distance in meters

    Returns:
        (latitude, longitude) of the projected point
    """
    lat_rad = radians(lat)
    lon_rad = radians(lon)
    bearing_rad = radians(bearing)
    angular_distance = distance / EARTH_RADIUS_METERS

    new_lat = asin(
        sin(lat_rad) * cos(angular_distance)
        + cos(lat_rad) * sin(angular_distance) * cos(bearing_rad)
    )
    new_lon = lon_rad + atan2(
        sin(bearing_rad) * sin(angular_distance) * cos(lat_rad),
        cos(angular_distance) - sin(lat_rad) * sin(new_lat)
    )

    return degrees(new_lat), degrees(new_lon)

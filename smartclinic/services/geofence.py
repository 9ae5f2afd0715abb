from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_METERS = 6371e3

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two coordinates."""
    phi1, phi2 = radians(lat1), radians(lat2)
    d_phi = radians(lat2 - lat1)
    d_lambda = radians(lon2 - lon1)

    a = sin(d_phi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * asin(sqrt(a))

def within_radius(lat: float, lon: float, center_lat: float, center_lon: float, radius_meters: float):
    """Return ``(inside, distance)`` for a point against a circular fence."""
    distance = haversine_distance(lat, lon, center_lat, center_lon)
    return distance <= radius_meters, distance

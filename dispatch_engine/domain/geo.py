"""
Great-circle distance between coordinates.
"""
import math
from typing import NamedTuple

EARTH_RADIUS_KM = 6371.0


class Coordinate(NamedTuple):
    """(latitude, longitude) in degrees"""
    lat: float
    lng: float


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in kilometres.

    Callers are responsible for rejecting out-of-range coordinates.
    """
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # float error can push h a hair past 1 for antipodal points
    h = min(1.0, h)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

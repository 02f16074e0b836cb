"""Geographic helpers for location-biased place search."""

import math

from app.models import BoundingBox

KM_PER_DEGREE_LAT = 110.574
KM_PER_DEGREE_LNG_AT_EQUATOR = 111.320


def bounding_box(lat: float, lng: float, radius_km: float) -> BoundingBox:
    """Approximate a square box of +/- ``radius_km`` around a point.

    Uses the equirectangular degree approximation, which is plenty for a
    search bias of a few tens of kilometres.

    Args:
        lat: Latitude of the reference point in degrees.
        lng: Longitude of the reference point in degrees.
        radius_km: Half-width of the box in kilometres.

    Returns:
        The box as south/west/north/east degrees.
    """
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    lng_delta = radius_km / (KM_PER_DEGREE_LNG_AT_EQUATOR * math.cos(lat * math.pi / 180))
    return BoundingBox(
        south=lat - lat_delta,
        west=lng - lng_delta,
        north=lat + lat_delta,
        east=lng + lng_delta,
    )

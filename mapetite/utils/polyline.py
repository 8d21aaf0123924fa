"""
Encoded polyline codec (5 decimal digits of precision).
"""
from typing import Iterable, List

import polyline

from mapetite.models import GeoPoint

PRECISION = 5


def decode_polyline(encoded: str) -> List[GeoPoint]:
    """Decode an encoded polyline string into a list of points."""
    if not encoded:
        return []
    try:
        coords = polyline.decode(encoded, PRECISION)
    except IndexError:
        raise ValueError("Truncated polyline")
    return [GeoPoint(lat, lng) for lat, lng in coords]


def encode_polyline(points: Iterable[GeoPoint]) -> str:
    """Encode points into a polyline string."""
    return polyline.encode([(p.lat, p.lng) for p in points], PRECISION)

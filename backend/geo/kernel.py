from __future__ import annotations

import math
from typing import Sequence

EARTH_RADIUS_KM = 6371.0

Ring = Sequence[tuple[float, float]]  # [(lon, lat), ...]


def point_in_ring(lon: float, lat: float, ring: Ring) -> bool:
    """
    Even-odd ray casting against a single ring.

    Points exactly on an edge may land on either side. NaN inputs fall through every
    comparison as False, so they are reported as outside.
    """
    inside = False
    n = len(ring)
    if n < 3:
        return False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            # (yj - yi) is non-zero here because exactly one endpoint is above `lat`.
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(lon: float, lat: float, rings: Sequence[Ring]) -> bool:
    """
    Polygon-with-holes containment: inside the outer ring and outside every hole.
    """
    if not rings:
        return False
    if not point_in_ring(lon, lat, rings[0]):
        return False
    for hole in rings[1:]:
        if point_in_ring(lon, lat, hole):
            return False
    return True


def ring_centroid(ring: Ring) -> tuple[float, float]:
    """
    Arithmetic mean of ring vertices as (lon, lat).

    This is a vertex average, not an area-weighted centroid; a closed ring counts its
    repeated first vertex twice.
    """
    if not ring:
        raise ValueError("ring_centroid() needs at least one vertex")
    lon_sum = 0.0
    lat_sum = 0.0
    for lon, lat in ring:
        lon_sum += lon
        lat_sum += lat
    n = float(len(ring))
    return lon_sum / n, lat_sum / n


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c

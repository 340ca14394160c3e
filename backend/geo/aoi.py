from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def expanded(self, margin_deg: float) -> "BBox":
        b = self.normalized()
        m = float(margin_deg)
        return BBox(
            min_lon=b.min_lon - m,
            min_lat=b.min_lat - m,
            max_lon=b.max_lon + m,
            max_lat=b.max_lat + m,
        )

    def contains(self, lon: float, lat: float) -> bool:
        # Inclusive edges; NaN compares False everywhere so it is never contained.
        return (
            self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat
        )

    def intersects(self, other: "BBox") -> bool:
        return not (
            other.min_lon > self.max_lon
            or other.max_lon < self.min_lon
            or other.min_lat > self.max_lat
            or other.max_lat < self.min_lat
        )

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "minLon": self.min_lon,
            "minLat": self.min_lat,
            "maxLon": self.max_lon,
            "maxLat": self.max_lat,
        }


def bbox_of(coords: list[tuple[float, float]]) -> BBox | None:
    """
    Bounding box of (lon, lat) pairs, or None for an empty input.
    """
    if not coords:
        return None
    lons = [c[0] for c in coords]
    lats = [c[1] for c in coords]
    return BBox(min_lon=min(lons), min_lat=min(lats), max_lon=max(lons), max_lat=max(lats))

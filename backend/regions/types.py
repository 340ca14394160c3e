from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from geo.aoi import BBox
from geo.kernel import Ring, haversine_km, point_in_polygon, ring_centroid


@dataclass
class Region:
    """
    A named area (e.g. a neighborhood) made of one or more polygons with holes.

    `polygons` is a list of polygons; each polygon is [outer_ring, *holes] and every
    ring is [(lon, lat), ...]. A GeoJSON Polygon yields one entry, a MultiPolygon many.
    """

    name: str
    polygons: list[list[Ring]]
    props: dict[str, Any] = field(default_factory=dict)
    bbox: BBox = field(init=False)

    _centroid: tuple[float, float] | None = field(default=None, init=False, repr=False)
    _boundary_radius_km: float | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        coords = [pt for poly in self.polygons for pt in poly[0]]
        lons = [c[0] for c in coords]
        lats = [c[1] for c in coords]
        self.bbox = BBox(
            min_lon=min(lons), min_lat=min(lats), max_lon=max(lons), max_lat=max(lats)
        )

    def contains(self, lon: float, lat: float) -> bool:
        if not self.bbox.contains(lon, lat):
            return False
        return any(point_in_polygon(lon, lat, poly) for poly in self.polygons)

    def centroid(self) -> tuple[float, float]:
        """
        Vertex-mean centroid (lon, lat) of the first polygon's outer ring, cached.
        """
        if self._centroid is None:
            self._centroid = ring_centroid(self.polygons[0][0])
        return self._centroid

    def boundary_radius_km(self) -> float:
        """
        Farthest outer-ring vertex from the centroid, in km.
        """
        if self._boundary_radius_km is None:
            c_lon, c_lat = self.centroid()
            self._boundary_radius_km = max(
                haversine_km(c_lat, c_lon, lat, lon) for lon, lat in self.polygons[0][0]
            )
        return self._boundary_radius_km

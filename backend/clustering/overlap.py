from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from clustering.types import Cluster, ClusterTier, EventPoint
from settings.types import OverlapSettings


@dataclass(frozen=True)
class PlacedPoint:
    point: EventPoint
    lon: float
    lat: float

    @property
    def displaced(self) -> bool:
        return self.lon != self.point.lon or self.lat != self.point.lat


def _js_round(x: float) -> int:
    # Half-up rounding; Python's round() is half-to-even.
    return int(math.floor(x + 0.5))


def grid_key(lon: float, lat: float, grid_deg: float) -> tuple[int, int]:
    return _js_round(lon / grid_deg), _js_round(lat / grid_deg)


def separate_overlapping(
    points: Iterable[EventPoint], overlap: OverlapSettings | None = None
) -> list[PlacedPoint]:
    """
    Spread points sharing a grid cell along a golden-angle spiral.

    The first point in a cell keeps its coordinates; the Nth collision is offset by
    `baseOffsetDeg * N` at `goldenAngleDeg * N`. Output order follows input order.
    """
    o = overlap or OverlapSettings()
    occupied: dict[tuple[int, int], int] = {}
    out: list[PlacedPoint] = []
    for p in points:
        key = grid_key(p.lon, p.lat, o.gridDeg)
        count = occupied.get(key, 0)
        occupied[key] = count + 1
        if count == 0:
            out.append(PlacedPoint(point=p, lon=p.lon, lat=p.lat))
            continue
        angle = math.radians(count * o.goldenAngleDeg)
        distance = o.baseOffsetDeg * count
        out.append(
            PlacedPoint(
                point=p,
                lon=p.lon + math.cos(angle) * distance,
                lat=p.lat + math.sin(angle) * distance,
            )
        )
    return out


def individual_clusters(
    points: Iterable[EventPoint],
    overlap: OverlapSettings | None = None,
    *,
    region_name: str | None = None,
) -> list[Cluster]:
    out: list[Cluster] = []
    for placed in separate_overlapping(points, overlap):
        p = placed.point
        metadata: dict = {"type": "individual", "category": p.category}
        if region_name is not None:
            metadata["regionName"] = region_name
        if placed.displaced:
            metadata["displaced"] = True
            metadata["trueLon"] = p.lon
            metadata["trueLat"] = p.lat
        out.append(
            Cluster(
                id=f"individual-{p.id}",
                lon=placed.lon,
                lat=placed.lat,
                members=(p,),
                tier=ClusterTier.individual,
                radius_km=0.0,
                stable=True,
                metadata=metadata,
            )
        )
    return out

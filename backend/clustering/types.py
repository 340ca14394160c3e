from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ClusterTier(str, Enum):
    heat = "heat"
    region = "region"
    individual = "individual"


@dataclass(frozen=True)
class EventPoint:
    """
    A geolocated event as handed over by the caller.

    Points are referenced (never copied) by clusters, so keep them immutable.
    """

    id: str
    lon: float
    lat: float
    category: str = ""
    popularity: float = 0.0
    props: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def has_finite_coords(self) -> bool:
        return math.isfinite(self.lon) and math.isfinite(self.lat)

    def has_finite_popularity(self) -> bool:
        return math.isfinite(self.popularity)


@dataclass(frozen=True)
class Cluster:
    """
    One rendered marker: one or more member points at a single position.

    `lon`/`lat` is where the marker goes; for displaced individual points this differs
    from the member's true coordinates.
    """

    id: str
    lon: float
    lat: float
    members: tuple[EventPoint, ...]
    tier: ClusterTier
    radius_km: float = 0.0
    stable: bool = True
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def member_ids(self) -> list[str]:
        return [p.id for p in self.members]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lon": self.lon,
            "lat": self.lat,
            "count": self.count,
            "tier": self.tier.value,
            "radiusKm": self.radius_km,
            "stable": self.stable,
            "memberIds": self.member_ids,
            "metadata": dict(self.metadata),
        }


def mean_center(points: list[EventPoint] | tuple[EventPoint, ...]) -> tuple[float, float]:
    """
    Arithmetic mean of member coordinates as (lon, lat).
    """
    if not points:
        raise ValueError("mean_center() needs at least one point")
    n = float(len(points))
    return sum(p.lon for p in points) / n, sum(p.lat for p in points) / n

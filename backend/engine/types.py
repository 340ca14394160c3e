from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from clustering.types import Cluster, ClusterTier
from geo.aoi import BBox


@dataclass(frozen=True)
class ClusterUpdate:
    """
    What a recompute produced, as handed to listeners and the HTTP layer.

    - tier: the strategy actually used (heat when no regions are loaded)
    - zoom_tier: the tier the zoom alone selects
    """

    tier: ClusterTier
    zoom_tier: ClusterTier
    clusters: list[Cluster]
    bounds: BBox
    zoom: float
    declustered: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "zoomTier": self.zoom_tier.value,
            "zoom": self.zoom,
            "bbox": self.bounds.as_dict(),
            "declustered": list(self.declustered),
            "clusters": [c.to_dict() for c in self.clusters],
            "stats": dict(self.stats),
        }


@dataclass(frozen=True)
class DeclusterView:
    """
    View the caller should move to after expanding a region.
    """

    region_name: str
    bbox: BBox
    center: dict[str, float]  # {"lat": ..., "lon": ...}
    zoom: float
    member_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "regionName": self.region_name,
            "bbox": self.bbox.as_dict(),
            "center": dict(self.center),
            "zoom": self.zoom,
            "memberCount": self.member_count,
        }


class ClusterListener(Protocol):
    def __call__(self, update: ClusterUpdate) -> None: ...

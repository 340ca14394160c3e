from __future__ import annotations

import logging
import re
from typing import Callable, Collection, Sequence

from clustering.overlap import individual_clusters
from clustering.types import Cluster, ClusterTier, EventPoint, mean_center
from regions.index import RegionIndex
from settings.types import OverlapSettings

logger = logging.getLogger(__name__)

Locator = Callable[[EventPoint], str | None]


def region_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def group_by_region(
    points: Sequence[EventPoint],
    *,
    index: RegionIndex,
    locate: Locator | None = None,
) -> tuple[dict[str, list[EventPoint]], list[EventPoint]]:
    """
    Bucket points by containing region name; returns (buckets, unmatched).

    Buckets are ordered by first appearance and keep input order inside.
    """
    if locate is None:

        def locate(p: EventPoint) -> str | None:
            r = index.find_region(p.lon, p.lat)
            return r.name if r is not None else None

    groups: dict[str, list[EventPoint]] = {}
    unmatched: list[EventPoint] = []
    for p in points:
        name = locate(p)
        if name is None:
            unmatched.append(p)
            continue
        groups.setdefault(name, []).append(p)
    return groups, unmatched


def region_clusters(
    points: Sequence[EventPoint],
    *,
    index: RegionIndex,
    declustered: Collection[str] = (),
    overlap: OverlapSettings | None = None,
    locate: Locator | None = None,
) -> tuple[list[Cluster], list[EventPoint]]:
    """
    One cluster per region, or one per member for declustered regions.

    Points outside every region are returned separately (and logged) rather than
    failing the whole pass.
    """
    groups, unmatched = group_by_region(points, index=index, locate=locate)
    if unmatched:
        logger.warning(
            "%d point(s) fall outside every region and are not clustered (e.g. %s at %.5f,%.5f)",
            len(unmatched),
            unmatched[0].id,
            unmatched[0].lat,
            unmatched[0].lon,
        )

    clusters: list[Cluster] = []
    for name, members in groups.items():
        if name in declustered:
            clusters.extend(individual_clusters(members, overlap, region_name=name))
            continue
        clusters.append(_region_cluster(name, members, index))
    return clusters, unmatched


def _region_cluster(name: str, members: list[EventPoint], index: RegionIndex) -> Cluster:
    # Member mean, not the polygon centroid: keeps the marker where events actually are.
    lon, lat = mean_center(members)
    region = index.get(name)
    boundary_radius = region.boundary_radius_km() if region is not None else 0.0
    return Cluster(
        id=f"region-{region_slug(name)}",
        lon=lon,
        lat=lat,
        members=tuple(members),
        tier=ClusterTier.region,
        radius_km=boundary_radius,
        stable=True,
        metadata={
            "type": "region",
            "regionName": name,
            "boundaryRadius": boundary_radius,
        },
    )

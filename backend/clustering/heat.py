from __future__ import annotations

from typing import Sequence

from clustering.stable import StableCenterCache
from clustering.types import Cluster, ClusterTier, EventPoint, mean_center
from geo.kernel import haversine_km
from settings.types import HeatSettings


def proximity_km_for_zoom(zoom: float, heat: HeatSettings | None = None) -> float:
    h = heat or HeatSettings()
    return h.farProximityKm if float(zoom) < h.farBelowZoom else h.proximityKm


def popularity_level(popularity: float) -> str:
    if popularity >= 150:
        return "Major Event"
    if popularity >= 100:
        return "Popular"
    if popularity >= 50:
        return "Moderate"
    return "Small"


def spread_radius_km(members: Sequence[EventPoint]) -> float:
    """
    Farthest member from the arithmetic mean, in km (0 for singletons).
    """
    if len(members) < 2:
        return 0.0
    c_lon, c_lat = mean_center(members)
    return max(haversine_km(c_lat, c_lon, p.lat, p.lon) for p in members)


def heat_clusters(
    points: Sequence[EventPoint],
    *,
    zoom: float,
    heat: HeatSettings | None = None,
    stable_cache: StableCenterCache | None = None,
) -> list[Cluster]:
    """
    Two-pass clustering for far-out zooms.

    1. Popular points (popularity >= threshold), most popular first, absorb unassigned
       popular neighbours within the proximity radius whose popularity differs by less
       than `maxPopularityDiffRatio` of the seed's.
    2. The rest group by plain proximity with a wider radius.

    Groups smaller than `minClusterSize` are emitted as singletons.
    """
    h = heat or HeatSettings()
    radius = proximity_km_for_zoom(zoom, h)
    regular_radius = radius * h.regularRadiusFactor

    popular: list[EventPoint] = []
    regular: list[EventPoint] = []
    for p in points:
        (popular if p.popularity >= h.popularityThreshold else regular).append(p)
    # Stable sort: equal popularity keeps input order.
    popular.sort(key=lambda p: -p.popularity)

    assigned: set[str] = set()
    clusters: list[Cluster] = []

    for seed in popular:
        if seed.id in assigned:
            continue
        max_diff = seed.popularity * h.maxPopularityDiffRatio
        group = [
            p
            for p in popular
            if p.id not in assigned
            and (
                p.id == seed.id
                or (
                    haversine_km(seed.lat, seed.lon, p.lat, p.lon) < radius
                    and abs(p.popularity - seed.popularity) < max_diff
                )
            )
        ]
        assigned.update(p.id for p in group)
        if len(group) >= h.minClusterSize:
            clusters.append(_group_cluster(group, "popular", stable_cache))
        else:
            clusters.append(
                _single(seed, {"type": "popular-event", "popularity": seed.popularity})
            )

    for seed in regular:
        if seed.id in assigned:
            continue
        group = [
            p
            for p in regular
            if p.id not in assigned
            and (
                p.id == seed.id
                or haversine_km(seed.lat, seed.lon, p.lat, p.lon) < regular_radius
            )
        ]
        assigned.update(p.id for p in group)
        if len(group) >= h.minClusterSize:
            clusters.append(_group_cluster(group, "regular", stable_cache))
        else:
            clusters.extend(_single(p, {"type": "single"}) for p in group)

    return clusters


def _group_cluster(
    members: list[EventPoint],
    kind: str,
    stable_cache: StableCenterCache | None,
) -> Cluster:
    # Popular groups lean toward their biggest events; regular groups weigh evenly.
    weights = [p.popularity if kind == "popular" else 1.0 for p in members]
    total_weight = sum(weights)
    if total_weight <= 0:
        weights = [1.0] * len(members)
        total_weight = float(len(members))
    w_lon = sum(p.lon * w for p, w in zip(members, weights)) / total_weight
    w_lat = sum(p.lat * w for p, w in zip(members, weights)) / total_weight

    if stable_cache is not None:
        lon, lat = stable_cache.center_for(members, anchor=(w_lon, w_lat))
    else:
        lon, lat = w_lon, w_lat

    total_pop = sum(p.popularity for p in members)
    avg_pop = total_pop / len(members)
    return Cluster(
        id=f"heat-{kind}-{members[0].id}",
        lon=lon,
        lat=lat,
        members=tuple(members),
        tier=ClusterTier.heat,
        radius_km=spread_radius_km(members),
        stable=stable_cache is not None,
        metadata={
            "type": "popularity-cluster" if kind == "popular" else "regular-cluster",
            "weightedLon": w_lon,
            "weightedLat": w_lat,
            "totalPopularity": total_pop,
            "avgPopularity": avg_pop,
            "popularityLevel": popularity_level(avg_pop),
        },
    )


def _single(p: EventPoint, metadata: dict) -> Cluster:
    return Cluster(
        id=f"heat-{p.id}",
        lon=p.lon,
        lat=p.lat,
        members=(p,),
        tier=ClusterTier.heat,
        radius_km=0.0,
        stable=True,
        metadata=metadata,
    )

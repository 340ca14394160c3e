from __future__ import annotations

import pytest

from clustering.heat import heat_clusters, popularity_level, proximity_km_for_zoom
from clustering.stable import StableCenterCache
from clustering.types import ClusterTier, EventPoint
from settings.types import HeatSettings


def _ids(clusters) -> list[list[str]]:
    return [c.member_ids for c in clusters]


def test_proximity_radius_depends_on_zoom():
    assert proximity_km_for_zoom(8.9) == 10.0
    assert proximity_km_for_zoom(9.0) == 6.0
    assert proximity_km_for_zoom(8.0, HeatSettings(farProximityKm=12.0)) == 12.0


@pytest.mark.parametrize(
    "popularity,level",
    [(200, "Major Event"), (150, "Major Event"), (149.9, "Popular"), (100, "Popular"), (50, "Moderate"), (10, "Small")],
)
def test_popularity_level(popularity, level):
    assert popularity_level(popularity) == level


def test_popular_points_group_by_distance_and_similar_popularity():
    pts = [
        EventPoint(id="p90", lon=0.000, lat=0.000, popularity=90),
        EventPoint(id="p120", lon=0.005, lat=0.000, popularity=120),
        EventPoint(id="p100", lon=0.000, lat=0.005, popularity=100),
    ]
    clusters = heat_clusters(pts, zoom=10.0)
    assert len(clusters) == 1
    c = clusters[0]
    # Seed is the most popular point.
    assert c.id == "heat-popular-p120"
    assert c.member_ids == ["p120", "p100", "p90"]
    assert c.tier == ClusterTier.heat
    assert c.metadata["type"] == "popularity-cluster"
    assert c.metadata["totalPopularity"] == 310
    assert c.metadata["popularityLevel"] == "Popular"
    # No cache: popularity-weighted centroid.
    assert c.lon == pytest.approx((0.005 * 120) / 310)
    assert c.lat == pytest.approx((0.005 * 100) / 310)


def test_popular_points_with_distant_popularity_stay_apart():
    pts = [
        EventPoint(id="big", lon=0.0, lat=0.0, popularity=200),
        EventPoint(id="mid", lon=0.001, lat=0.0, popularity=90),
    ]
    clusters = heat_clusters(pts, zoom=10.0)
    assert _ids(clusters) == [["big"], ["mid"]]
    assert all(c.metadata["type"] == "popular-event" for c in clusters)
    assert clusters[0].id == "heat-big"


def test_regular_points_use_twice_the_radius():
    # ~8.9 km apart: inside 2 x 6 km at zoom 10.
    near = [
        EventPoint(id="a", lon=0.0, lat=0.0, popularity=10),
        EventPoint(id="b", lon=0.0, lat=0.08, popularity=20),
    ]
    clusters = heat_clusters(near, zoom=10.0)
    assert _ids(clusters) == [["a", "b"]]
    assert clusters[0].id == "heat-regular-a"
    assert clusters[0].metadata["type"] == "regular-cluster"
    # Unweighted centroid.
    assert clusters[0].lat == pytest.approx(0.04)

    # ~13.3 km apart: split at zoom 10, merged at zoom 8 (2 x 10 km).
    far = [
        EventPoint(id="a", lon=0.0, lat=0.0, popularity=10),
        EventPoint(id="b", lon=0.0, lat=0.12, popularity=20),
    ]
    assert _ids(heat_clusters(far, zoom=10.0)) == [["a"], ["b"]]
    assert _ids(heat_clusters(far, zoom=8.0)) == [["a", "b"]]
    assert heat_clusters(far, zoom=10.0)[0].metadata == {"type": "single"}


def test_heat_clusters_partition_the_input():
    pts = [
        EventPoint(id=f"e{i}", lon=(i % 7) * 0.03, lat=(i % 5) * 0.02, popularity=(i * 37) % 190)
        for i in range(60)
    ]
    clusters = heat_clusters(pts, zoom=10.0, stable_cache=StableCenterCache())
    seen = [pid for c in clusters for pid in c.member_ids]
    assert sorted(seen) == sorted(p.id for p in pts)
    assert len(seen) == len(set(seen))
    assert all(c.count >= 1 for c in clusters)


def test_heat_clusters_empty():
    assert heat_clusters([], zoom=5.0) == []

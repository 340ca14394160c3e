from __future__ import annotations

import logging
import math

import pytest

import engine.engine as engine_module
from clustering.errors import DataError
from clustering.types import ClusterTier, EventPoint
from engine import ClusteringEngine
from geo.aoi import BBox
from settings.types import ClusteringSettings

FULL = BBox(0.0, 0.0, 3.0, 1.0)


def _engine(**kwargs) -> ClusteringEngine:
    return ClusteringEngine(settings=ClusteringSettings(), **kwargs)


def test_set_points_drops_non_finite_and_duplicate_ids(caplog):
    e = _engine()
    with caplog.at_level(logging.WARNING, logger="engine.engine"):
        accepted = e.set_points(
            [
                EventPoint(id="ok", lon=0.5, lat=0.5),
                EventPoint(id="nan", lon=math.nan, lat=0.5),
                EventPoint(id="inf", lon=0.5, lat=math.inf),
                EventPoint(id="ok", lon=0.6, lat=0.6),
            ]
        )
    assert accepted == 1
    assert [p.id for p in e.points] == ["ok"]
    assert e.points[0].lon == 0.5
    assert "non-finite" in caplog.text
    assert "repeated id" in caplog.text
    e.close()


def test_set_points_drops_non_finite_popularity(caplog):
    e = _engine()
    with caplog.at_level(logging.WARNING, logger="engine.engine"):
        accepted = e.set_points(
            [
                EventPoint(id="ok", lon=0.5, lat=0.5, popularity=10.0),
                EventPoint(id="nanpop", lon=0.51, lat=0.5, popularity=math.nan),
                EventPoint(id="infpop", lon=0.52, lat=0.5, popularity=math.inf),
            ]
        )
    assert accepted == 1
    assert "non-finite popularity" in caplog.text

    update = e.recompute(FULL, 8.0)
    assert update.tier == ClusterTier.heat
    assert [pid for c in e.get_clusters() for pid in c.member_ids] == ["ok"]
    e.close()


def test_invalid_regions_fall_back_to_heat(three_squares):
    e = _engine()
    e.set_regions(three_squares)
    e.set_points([EventPoint(id="a", lon=0.5, lat=0.5)])
    assert e.recompute(FULL, 12.0).tier == ClusterTier.region

    with pytest.raises(DataError):
        e.set_regions({"type": "FeatureCollection", "features": [{"type": "Feature"}]})
    assert e.regions is None

    update = e.recompute(FULL, 12.0)
    assert update.tier == ClusterTier.heat
    assert update.zoom_tier == ClusterTier.region
    # Heat covers the individual zoom range too.
    assert e.recompute(FULL, 16.0).tier == ClusterTier.heat
    e.close()


def test_individual_tier_and_hit_test(three_squares):
    e = _engine()
    e.set_regions(three_squares)
    p = EventPoint(id="x", lon=0.5, lat=0.5)
    e.set_points([p, EventPoint(id="y", lon=2.5, lat=0.5)])

    update = e.recompute(FULL, 15.0)
    assert update.tier == ClusterTier.individual
    assert [c.id for c in e.get_clusters()] == ["individual-x", "individual-y"]
    assert e.tier == ClusterTier.individual

    assert e.find_cluster_at(0.5, 0.5) == [p]
    # ~0.011 deg is over a kilometre away.
    assert e.find_cluster_at(0.511, 0.5) is None
    assert e.find_cluster_at(0.511, 0.5, tolerance_km=5.0) == [p]
    assert e.find_cluster_at(math.nan, 0.5) is None
    assert e.find_cluster("individual-y").members[0].id == "y"
    assert e.find_cluster("nope") is None
    e.close()


def test_strategy_failure_keeps_previous_clusters(three_squares, monkeypatch, caplog):
    e = _engine()
    e.set_points([EventPoint(id="a", lon=0.5, lat=0.5, popularity=90)])
    first = e.update_now(FULL, 9.0)
    assert first is not None
    before = e.get_clusters()

    def boom(*args, **kwargs):
        raise RuntimeError("heat exploded")

    monkeypatch.setattr(engine_module, "heat_clusters", boom)
    with caplog.at_level(logging.ERROR, logger="engine.scheduler"):
        assert e.update_now(FULL, 9.5) is None
    assert e.get_clusters() == before
    assert e.last_update is first
    assert "heat exploded" in caplog.text
    e.close()


def test_reentrant_recompute_is_dropped(caplog):
    e = _engine()
    e.set_points([EventPoint(id="a", lon=0.5, lat=0.5)])
    inner = []

    def listener(update):
        inner.append(e.recompute(FULL, 16.0))

    e.add_listener(listener)
    with caplog.at_level(logging.INFO, logger="engine.engine"):
        outer = e.recompute(FULL, 12.0)
    assert outer is not None
    assert inner == [None]
    assert "already in flight" in caplog.text
    e.close()


def test_stale_result_is_discarded():
    e = _engine()
    e.set_points([EventPoint(id="a", lon=0.5, lat=0.5)])
    kept = e.recompute(FULL, 12.0)
    assert e.recompute(FULL, 16.0, is_current=lambda: False) is None
    assert e.last_update is kept
    assert e.tier == kept.tier
    e.close()


def test_listeners_and_unsubscribe():
    e = _engine()
    got = []
    unsubscribe = e.add_listener(got.append)
    e.recompute(FULL, 12.0)
    unsubscribe()
    unsubscribe()
    e.recompute(FULL, 13.0)
    assert len(got) == 1
    assert got[0].zoom == 12.0
    e.close()


def test_failing_listener_does_not_break_commit(caplog):
    e = _engine()

    def bad(update):
        raise RuntimeError("listener broke")

    e.add_listener(bad)
    with caplog.at_level(logging.ERROR, logger="engine.engine"):
        update = e.recompute(FULL, 12.0)
    assert update is not None
    assert e.last_update is update
    assert "listener broke" in caplog.text
    e.close()


def test_set_points_clears_stable_centers():
    e = _engine()
    pts = [EventPoint(id=f"p{i}", lon=0.001 * i, lat=0.0) for i in range(4)]
    e.set_points(pts)
    first = e.recompute(FULL, 8.0)
    assert first.stats["stableCenters"] == 1
    again = e.recompute(FULL, 8.0)
    assert [(c.lon, c.lat) for c in again.clusters] == [(c.lon, c.lat) for c in first.clusters]

    e.set_points(pts[:2])
    assert e.recompute(FULL, 8.0).stats["stableCenters"] == 1
    e.close()


def test_debounced_viewport_change_and_flush():
    e = _engine()
    e.set_points([EventPoint(id="a", lon=0.5, lat=0.5)])
    e.on_viewport_change(FULL, 11.0)
    e.on_viewport_change(FULL, 13.0)
    update = e.flush()
    assert update is not None
    assert update.zoom == 13.0
    assert e.flush() is None
    with pytest.raises(ValueError):
        e.on_viewport_change(BBox(math.nan, 0.0, 1.0, 1.0), 12.0)
    e.close()


def test_defaults_come_from_settings_file():
    e = ClusteringEngine()
    assert e.settings.scheduler.debounceMs == 150
    e.close()


def test_hit_test_tolerance_follows_zoom(three_squares):
    e = _engine()
    e.set_regions(three_squares)
    p = EventPoint(id="a", lon=0.5, lat=0.5)
    e.set_points([p])

    assert e.recompute(FULL, 11.0).tier == ClusterTier.region
    (c,) = e.get_clusters()
    # ~155 m east of the region marker: about two pixels at zoom 11.
    assert e.find_cluster_at(c.lon + 0.0014, c.lat) == [p]
    assert e.find_cluster_at(c.lon + 0.0014, c.lat, tolerance_km=0.05) is None

    # The same offset is tens of pixels at zoom 16.
    e.recompute(FULL, 16.0)
    assert e.find_cluster_at(0.5 + 0.0014, 0.5) is None
    e.close()

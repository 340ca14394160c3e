from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from main import app, sessions

MISSION = [(-122.415, 37.760), (-122.418, 37.758), (-122.412, 37.762)]
SOMA = [(-122.400, 37.778), (-122.398, 37.780)]
SF_BBOX = {"minLon": -122.46, "minLat": 37.74, "maxLon": -122.38, "maxLat": 37.81}


@pytest.fixture(autouse=True)
def _no_telemetry(monkeypatch):
    monkeypatch.setenv("PULSEMAP_TELEMETRY", "0")
    monkeypatch.delenv("PULSEMAP_CLUSTERING_CONFIG", raising=False)
    yield
    sessions.close_all()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _open_sf(client: TestClient) -> str:
    resp = client.post("/sessions", json={"cityId": "san_francisco"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["cityId"] == "san_francisco"
    assert body["regions"]["total"] == 5
    sid = body["sessionId"]

    points = [
        {"id": f"m{i}", "lon": lon, "lat": lat, "category": "music", "popularity": 40}
        for i, (lon, lat) in enumerate(MISSION)
    ] + [
        {"id": f"s{i}", "lon": lon, "lat": lat, "category": "food", "popularity": 20}
        for i, (lon, lat) in enumerate(SOMA)
    ]
    resp = client.put(f"/sessions/{sid}/points", json={"points": points})
    assert resp.json() == {"accepted": 5, "rejected": 0}
    return sid


def test_cities_endpoints(client):
    ids = [c["id"] for c in client.get("/cities").json()]
    assert "san_francisco" in ids
    assert client.get("/cities/nearest", params={"lat": 30.2, "lon": -97.7}).json()["id"] == "austin"


def test_region_tier_over_http(client):
    sid = _open_sf(client)
    resp = client.post(f"/sessions/{sid}/viewport", json={"bbox": SF_BBOX, "zoom": 12})
    assert resp.status_code == 200
    body = resp.json()
    assert body["tier"] == "region"
    by_id = {c["id"]: c for c in body["clusters"]}
    assert set(by_id) == {"region-mission", "region-soma"}
    assert by_id["region-mission"]["count"] == 3
    assert by_id["region-mission"]["label"] == "Mission (3 events)"
    assert by_id["region-mission"]["zoomTarget"] == 15.0
    assert by_id["region-soma"]["dominantCategory"] == "food"

    again = client.get(f"/sessions/{sid}/clusters").json()
    assert [c["id"] for c in again["clusters"]] == [c["id"] for c in body["clusters"]]


def test_decluster_and_recluster_over_http(client):
    sid = _open_sf(client)
    client.post(f"/sessions/{sid}/viewport", json={"bbox": SF_BBOX, "zoom": 13})

    resp = client.post(f"/sessions/{sid}/regions/Mission/decluster", json={"viewport": {"width": 800, "height": 600}})
    assert resp.status_code == 200
    body = resp.json()
    assert body["view"]["regionName"] == "Mission"
    assert body["view"]["memberCount"] == 3
    assert body["view"]["zoom"] <= 16.0
    ids = [c["id"] for c in body["update"]["clusters"]]
    assert ids == ["individual-m0", "individual-m1", "individual-m2", "region-soma"]
    assert client.get(f"/sessions/{sid}/regions").json()["declustered"] == ["Mission"]

    resp = client.post(f"/sessions/{sid}/regions/Mission/recluster")
    assert resp.json()["changed"] is True
    assert "region-mission" in [c["id"] for c in resp.json()["update"]["clusters"]]


def test_hit_test_and_cluster_detail(client):
    sid = _open_sf(client)
    client.post(f"/sessions/{sid}/viewport", json={"bbox": SF_BBOX, "zoom": 16})

    lon, lat = MISSION[0]
    hit = client.get(f"/sessions/{sid}/hit", params={"lon": lon, "lat": lat}).json()
    assert hit["hit"] is True
    assert [m["id"] for m in hit["members"]] == ["m0"]

    miss = client.get(f"/sessions/{sid}/hit", params={"lon": -122.0, "lat": 37.0}).json()
    assert miss == {"hit": False, "members": []}

    detail = client.get(f"/sessions/{sid}/clusters/individual-m0").json()
    assert detail["members"][0]["category"] == "music"
    assert client.get(f"/sessions/{sid}/clusters/nope").status_code == 404


def test_invalid_regions_return_422_and_fall_back_to_heat(client):
    sid = _open_sf(client)
    resp = client.put(f"/sessions/{sid}/regions", json={"type": "FeatureCollection", "features": "nope"})
    assert resp.status_code == 422

    body = client.post(f"/sessions/{sid}/viewport", json={"bbox": SF_BBOX, "zoom": 12}).json()
    assert body["tier"] == "heat"
    assert body["zoomTier"] == "region"


def test_debounced_viewport_then_flush(client):
    sid = _open_sf(client)
    resp = client.post(f"/sessions/{sid}/viewport", json={"bbox": SF_BBOX, "zoom": 9, "debounce": True})
    assert resp.json() == {"pending": True}
    body = client.post(f"/sessions/{sid}/viewport/flush").json()
    assert body["tier"] == "heat"
    assert body["zoom"] == 9.0


def test_unknown_session_region_and_city(client):
    assert client.get("/sessions/missing/clusters").status_code == 404
    assert client.delete("/sessions/missing").status_code == 404
    assert client.post("/sessions", json={"cityId": "atlantis"}).status_code == 404

    sid = _open_sf(client)
    assert client.post(f"/sessions/{sid}/regions/Atlantis/decluster").status_code == 404
    assert client.delete(f"/sessions/{sid}").json() == {"ok": True}
    assert client.get(f"/sessions/{sid}/clusters").status_code == 404


def test_session_near_location_picks_closest_city(client):
    resp = client.post("/sessions", json={"nearLat": 30.3, "nearLon": -97.7})
    assert resp.status_code == 200
    assert resp.json()["cityId"] == "austin"
    assert resp.json()["regions"] is None


def test_telemetry_summary_when_disabled(client):
    assert client.get("/telemetry/summary").json() == {"enabled": False, "rows": []}


def test_points_with_non_finite_popularity_are_rejected(client):
    sid = _open_sf(client)
    resp = client.put(
        f"/sessions/{sid}/points",
        content='{"points": [{"id": "n", "lon": -122.41, "lat": 37.76, "popularity": NaN}]}',
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 422

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api.models import ApiDecluster, ApiPoints, ApiSessionCreate, ApiViewport
from api.sessions import MapSession, SessionRegistry, UnknownSessionError
from cities.registry import (
    UnknownCityError,
    clear_registry_cache,
    detect_nearest_city,
    list_cities,
)
from clustering.errors import DataError, UnknownRegionError
from clustering.labels import cluster_label, cluster_zoom_target, dominant_category
from clustering.types import Cluster, EventPoint
from engine.types import ClusterUpdate
from settings.loader import clear_settings_cache
from telemetry.singleton import get_store, reset_store

logging.basicConfig(
    level=os.getenv("PULSEMAP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="pulsemap clustering")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionRegistry()


def _session(session_id: str) -> MapSession:
    try:
        return sessions.get(session_id)
    except UnknownSessionError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")


def _cluster_payload(c: Cluster, zoom: float) -> dict[str, Any]:
    out = c.to_dict()
    out["label"] = cluster_label(c)
    out["zoomTarget"] = cluster_zoom_target(c, zoom)
    out["dominantCategory"] = dominant_category(c)
    return out


def _update_payload(update: ClusterUpdate) -> dict[str, Any]:
    out = update.to_dict()
    out["clusters"] = [_cluster_payload(c, update.zoom) for c in update.clusters]
    return out


def _point_payload(p: EventPoint) -> dict[str, Any]:
    return {
        "id": p.id,
        "lon": p.lon,
        "lat": p.lat,
        "category": p.category,
        "popularity": p.popularity,
        "props": dict(p.props),
    }


def _current_payload(s: MapSession, **extra: Any) -> dict[str, Any]:
    last = s.engine.last_update
    out: dict[str, Any] = _update_payload(last) if last is not None else {"clusters": []}
    out.update(extra)
    return out


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/cities")
def get_cities():
    return [c.model_dump() for c in list_cities()]


@app.get("/cities/nearest")
def get_nearest_city(lat: float, lon: float):
    try:
        return detect_nearest_city(lat, lon).model_dump()
    except RuntimeError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/cities/reload")
def reload_config():
    clear_registry_cache()
    clear_settings_cache()
    return {"ok": True}


@app.post("/sessions")
def create_session(body: ApiSessionCreate):
    city_id = body.cityId
    try:
        if body.nearLat is not None and body.nearLon is not None:
            city_id = detect_nearest_city(body.nearLat, body.nearLon).id
        s = sessions.open(city_id)
    except RuntimeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownCityError as e:
        raise HTTPException(status_code=404, detail=f"Unknown city: {e.city_id}")
    regions = s.engine.regions
    return {
        "sessionId": s.id,
        "cityId": s.city_id,
        "regions": regions.stats() if regions is not None else None,
    }


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str):
    try:
        sessions.close(session_id)
    except UnknownSessionError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return {"ok": True}


@app.put("/sessions/{session_id}/points")
def put_points(session_id: str, body: ApiPoints):
    s = _session(session_id)
    with s.lock:
        accepted = s.engine.set_points(p.to_point() for p in body.points)
    return {"accepted": accepted, "rejected": len(body.points) - accepted}


@app.put("/sessions/{session_id}/regions")
def put_regions(session_id: str, body: dict[str, Any]):
    s = _session(session_id)
    with s.lock:
        try:
            index = s.engine.set_regions(body)
        except DataError as e:
            raise HTTPException(status_code=422, detail=str(e))
    return index.stats()


@app.get("/sessions/{session_id}/regions")
def get_regions(session_id: str):
    s = _session(session_id)
    index = s.engine.regions
    if index is None:
        return {"total": 0, "names": [], "bounds": None, "centroids": [], "declustered": []}
    out = index.stats()
    out["centroids"] = index.region_centroids()
    out["declustered"] = s.engine.declustered
    return out


@app.post("/sessions/{session_id}/viewport")
def post_viewport(session_id: str, body: ApiViewport):
    s = _session(session_id)
    bounds = body.bbox.to_bbox()
    with s.lock:
        try:
            if body.debounce:
                s.engine.on_viewport_change(bounds, body.zoom)
                return {"pending": True}
            update = s.engine.update_now(bounds, body.zoom)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        if update is None:
            # Failed or superseded: the previous clusters stay on screen.
            return _current_payload(s, stale=True)
        return _update_payload(update)


@app.post("/sessions/{session_id}/viewport/flush")
def flush_viewport(session_id: str):
    s = _session(session_id)
    with s.lock:
        update = s.engine.flush()
        if update is None:
            return _current_payload(s, stale=True)
        return _update_payload(update)


@app.get("/sessions/{session_id}/clusters")
def get_clusters(session_id: str):
    return _current_payload(_session(session_id))


@app.get("/sessions/{session_id}/clusters/{cluster_id}")
def get_cluster(session_id: str, cluster_id: str):
    s = _session(session_id)
    c = s.engine.find_cluster(cluster_id)
    if c is None:
        raise HTTPException(status_code=404, detail=f"Unknown cluster: {cluster_id}")
    last = s.engine.last_update
    out = _cluster_payload(c, last.zoom if last is not None else 0.0)
    out["members"] = [_point_payload(p) for p in c.members]
    return out


@app.get("/sessions/{session_id}/hit")
def hit_test(session_id: str, lon: float, lat: float, toleranceKm: float | None = None):
    s = _session(session_id)
    members = s.engine.find_cluster_at(lon, lat, tolerance_km=toleranceKm)
    if members is None:
        return {"hit": False, "members": []}
    return {"hit": True, "members": [_point_payload(p) for p in members]}


@app.post("/sessions/{session_id}/regions/{region_name}/decluster")
def decluster(session_id: str, region_name: str, body: ApiDecluster | None = None):
    s = _session(session_id)
    viewport = body.viewport.model_dump() if body is not None and body.viewport else None
    with s.lock:
        try:
            view = s.engine.decluster_region(region_name, viewport=viewport)
        except UnknownRegionError:
            raise HTTPException(status_code=404, detail=f"Unknown region: {region_name}")
        update = s.engine.refresh()
    out: dict[str, Any] = {"view": view.to_dict()}
    if update is not None:
        out["update"] = _update_payload(update)
    return out


@app.post("/sessions/{session_id}/regions/{region_name}/recluster")
def recluster(session_id: str, region_name: str):
    s = _session(session_id)
    with s.lock:
        changed = s.engine.recluster_region(region_name)
        update = s.engine.refresh() if changed else None
    out: dict[str, Any] = {"changed": changed}
    if update is not None:
        out["update"] = _update_payload(update)
    return out


@app.post("/sessions/{session_id}/declustered/reset")
def reset_declustered(session_id: str):
    s = _session(session_id)
    with s.lock:
        s.engine.reset_declustered()
        update = s.engine.refresh()
    return {"update": _update_payload(update) if update is not None else None}


@app.get("/telemetry/summary")
def telemetry_summary(sessionId: str | None = None, sinceMs: int | None = None):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.summary(session_id=sessionId, since_ms=sinceMs)}


@app.get("/telemetry/slowest")
def telemetry_slowest(sessionId: str | None = None, limit: int = 25):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.slowest(session_id=sessionId, limit=limit)}


@app.post("/telemetry/reset")
def telemetry_reset():
    reset_store()
    return {"ok": True}

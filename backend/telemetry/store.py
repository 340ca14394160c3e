from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from engine.types import ClusterUpdate
from telemetry.sql import (
    CREATE_RECOMPUTES_TABLE_SQL,
    INSERT_RECOMPUTE_SQL,
    SLOWEST_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

logger = logging.getLogger(__name__)

_ROW_KEYS = (
    "ts_ms",
    "session_id",
    "city_id",
    "tier",
    "zoom_tier",
    "view_zoom",
    "bbox_min_lon",
    "bbox_min_lat",
    "bbox_max_lon",
    "bbox_max_lat",
    "candidates",
    "clusters",
    "declustered",
    "compute_ms",
    "stats_json",
)


def _safe_float(v) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class TelemetryStore:
    """
    Per-recompute timings in a local DuckDB file.

    `record()` only enqueues; a single writer thread batches inserts, so the
    recompute path never waits on disk.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[dict[str, Any]]" = field(
        default_factory=lambda: queue.Queue(maxsize=10_000), repr=False
    )
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_RECOMPUTES_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._run, name="telemetry-writer", daemon=True
        )
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stop.set()
        w = self._worker
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._worker = None

    def record_update(
        self,
        update: ClusterUpdate,
        *,
        session_id: str | None = None,
        city_id: str | None = None,
    ) -> None:
        stats = update.stats
        bbox = update.bounds.as_dict()
        self.record(
            {
                "ts_ms": int(time.time() * 1000),
                "session_id": session_id,
                "city_id": city_id,
                "tier": update.tier.value,
                "zoom_tier": update.zoom_tier.value,
                "view_zoom": float(update.zoom),
                "bbox_min_lon": float(bbox["minLon"]),
                "bbox_min_lat": float(bbox["minLat"]),
                "bbox_max_lon": float(bbox["maxLon"]),
                "bbox_max_lat": float(bbox["maxLat"]),
                "candidates": int(stats.get("candidates", 0)),
                "clusters": int(stats.get("clusters", len(update.clusters))),
                "declustered": int(stats.get("declustered", 0)),
                "compute_ms": _safe_float(stats.get("computeMs")),
                "stats_json": json.dumps(stats, ensure_ascii=False),
            }
        )

    def record(self, row: dict[str, Any]) -> None:
        # Non-blocking: enqueue and return.
        self.start()
        try:
            self._q.put_nowait(row)
        except queue.Full:
            logger.debug("Telemetry queue full; dropping recompute event")

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """
        Wait until queued events are written (used by tests).
        """
        if self._worker is None:
            return
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            if self._q.unfinished_tasks == 0:
                break
            time.sleep(0.01)
        # Give the writer thread time to flush on its time-based trigger.
        time.sleep(0.55)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        """
        Read query inside the backend process.

        DuckDB holds a file lock while this process writes; other processes cannot
        open the file, so reads go through the API instead.
        """
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(
        self,
        *,
        session_id: str | None = None,
        since_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = _where(session_id=session_id, since_ms=since_ms)
        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)

        out: list[dict[str, Any]] = []
        for tier, n, avg_ms, p50, p95, avg_candidates, avg_clusters in rows:
            out.append(
                {
                    "tier": tier,
                    "n": int(n),
                    "avgComputeMs": _safe_float(avg_ms),
                    "p50ComputeMs": _safe_float(p50),
                    "p95ComputeMs": _safe_float(p95),
                    "avgCandidates": _safe_float(avg_candidates),
                    "avgClusters": _safe_float(avg_clusters),
                }
            )
        return out

    def slowest(
        self,
        *,
        session_id: str | None = None,
        limit: int = 25,
    ) -> list[dict[str, Any]]:
        where_sql, params = _where(session_id=session_id, since_ms=None)
        params.append(int(max(1, min(200, limit))))
        rows = self.query(SLOWEST_SQL_TEMPLATE.format(where_sql=where_sql), params)
        return [
            {
                "tsMs": int(ts_ms),
                "sessionId": sid,
                "tier": tier,
                "viewZoom": _safe_float(view_zoom),
                "candidates": candidates,
                "clusters": clusters,
                "computeMs": _safe_float(compute_ms),
            }
            for ts_ms, sid, tier, view_zoom, candidates, clusters, compute_ms in rows
        ]

    def reset(self) -> None:
        # Stop the writer first so it can't write to a closed connection.
        self.stop(timeout_s=2.0)
        with self._lock:
            self.conn.close()
            self.path.unlink(missing_ok=True)

    def _run(self) -> None:
        self.ensure_schema()
        batch: list[dict[str, Any]] = []
        last_flush = time.time()

        def flush_batch() -> None:
            nonlocal batch
            if not batch:
                return
            rows = [tuple(e.get(k) for k in _ROW_KEYS) for e in batch]
            batch = []
            try:
                with self._lock:
                    self.conn.executemany(INSERT_RECOMPUTE_SQL, rows)
                    # Make rows visible to readers immediately.
                    self.conn.execute("CHECKPOINT;")
            except duckdb.Error:
                logger.exception("Failed to write %d telemetry row(s)", len(rows))

        while not self._stop.is_set():
            try:
                e = self._q.get(timeout=0.1)
            except queue.Empty:
                e = None

            if e is not None:
                batch.append(e)
                self._q.task_done()

            # Flush on size or time.
            now = time.time()
            if len(batch) >= 250 or (batch and (now - last_flush) >= 0.5):
                flush_batch()
                last_flush = now

        # Drain remaining
        while True:
            try:
                e = self._q.get_nowait()
            except queue.Empty:
                break
            batch.append(e)
            self._q.task_done()
        flush_batch()


def _where(*, session_id: str | None, since_ms: int | None) -> tuple[str, list[Any]]:
    where: list[str] = []
    params: list[Any] = []
    if session_id:
        where.append("session_id = ?")
        params.append(session_id)
    if since_ms is not None:
        where.append("ts_ms >= ?")
        params.append(int(since_ms))
    return (f"WHERE {' AND '.join(where)}" if where else ""), params


from __future__ import annotations

CREATE_RECOMPUTES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS recomputes (
  ts_ms BIGINT,
  session_id TEXT,
  city_id TEXT,
  tier TEXT,
  zoom_tier TEXT,
  view_zoom DOUBLE,
  bbox_min_lon DOUBLE,
  bbox_min_lat DOUBLE,
  bbox_max_lon DOUBLE,
  bbox_max_lat DOUBLE,
  candidates INTEGER,
  clusters INTEGER,
  declustered INTEGER,
  compute_ms DOUBLE,
  stats_json TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  tier,
  COUNT(*) AS n,
  AVG(compute_ms) AS avg_ms,
  quantile_cont(compute_ms, 0.50) AS p50_ms,
  quantile_cont(compute_ms, 0.95) AS p95_ms,
  AVG(candidates) AS avg_candidates,
  AVG(clusters) AS avg_clusters
FROM recomputes
{where_sql}
GROUP BY tier
ORDER BY tier
"""

SLOWEST_SQL_TEMPLATE = """
SELECT
  ts_ms,
  session_id,
  tier,
  view_zoom,
  candidates,
  clusters,
  compute_ms
FROM recomputes
{where_sql}
ORDER BY compute_ms DESC
LIMIT ?
"""

INSERT_RECOMPUTE_SQL = """
INSERT INTO recomputes
  (ts_ms, session_id, city_id, tier, zoom_tier, view_zoom,
   bbox_min_lon, bbox_min_lat, bbox_max_lon, bbox_max_lat,
   candidates, clusters, declustered, compute_ms, stats_json)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

from __future__ import annotations

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS preview_events (
  ts_ms BIGINT,
  event TEXT,
  project_id TEXT,
  generation BIGINT,
  status TEXT,
  stats_json TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  event,
  COUNT(*) AS n,
  COUNT(DISTINCT project_id) AS projects,
  AVG(try_cast(json_extract(stats_json, '$.elapsedMs') AS DOUBLE)) AS avg_elapsed_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.elapsedMs') AS DOUBLE), 0.95) AS p95_elapsed_ms,
  MAX(ts_ms) AS last_ts_ms
FROM preview_events
{where_sql}
GROUP BY event
ORDER BY event
"""

RECENT_SQL_TEMPLATE = """
SELECT ts_ms, event, project_id, generation, status, stats_json
FROM preview_events
{where_sql}
ORDER BY ts_ms DESC
LIMIT ?
"""

INSERT_EVENTS_SQL = """
INSERT INTO preview_events
  (ts_ms, event, project_id, generation, status, stats_json)
VALUES (?, ?, ?, ?, ?, ?)
"""

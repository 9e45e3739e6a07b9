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

from telemetry.sql import (
    CREATE_EVENTS_TABLE_SQL,
    INSERT_EVENTS_SQL,
    RECENT_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

logger = logging.getLogger(__name__)

EventRow = tuple[int, str, "str | None", int, str, str]


def _safe_float(v) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _where(clauses: list[tuple[str, Any]]) -> tuple[str, list[Any]]:
    active = [(sql, value) for sql, value in clauses if value is not None]
    if not active:
        return "", []
    return "WHERE " + " AND ".join(sql for sql, _ in active), [v for _, v in active]


@dataclass
class TelemetryStore:
    """
    Preview lifecycle events (metadata loads, engine ready/error, toggles, ...) in DuckDB.

    `record()` only enqueues; one writer thread batches rows into the database, so the
    event loop driving the preview never waits on disk. A full queue drops events.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    max_pending: int = 10_000
    batch_size: int = 200
    flush_interval_s: float = 0.5
    dropped: int = 0
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _pending: "queue.Queue[EventRow]" = field(init=False, repr=False)
    _closed: threading.Event = field(default_factory=threading.Event, repr=False)
    _writer: threading.Thread | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._pending = queue.Queue(maxsize=self.max_pending)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._writer is not None:
            return
        self._closed.clear()
        self._writer = threading.Thread(
            target=self._run, name="preview-telemetry-writer", daemon=True
        )
        self._writer.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._closed.set()
        writer = self._writer
        if writer is not None and writer.is_alive():
            writer.join(timeout=timeout_s)
        self._writer = None

    def record(
        self,
        *,
        event: str,
        project_id: str | None,
        generation: int,
        status: str,
        stats: dict[str, Any] | None = None,
    ) -> None:
        self.start()
        row: EventRow = (
            int(time.time() * 1000),
            str(event),
            project_id,
            int(generation),
            str(status),
            json.dumps(stats or {}, ensure_ascii=False, default=str),
        )
        try:
            self._pending.put_nowait(row)
        except queue.Full:
            self.dropped += 1
            logger.debug("telemetry queue full; dropped %s event", event)

    def flush(self, *, timeout_s: float = 2.0) -> bool:
        """
        Block until every queued event is in the database; False on timeout.
        """
        if self._writer is None:
            return True
        deadline = time.monotonic() + timeout_s
        while self._pending.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        """
        Read through the writer's own connection.

        DuckDB locks the file per process, so a second connection from elsewhere
        can fail while the backend is running.
        """
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(
        self,
        *,
        project_id: str | None = None,
        since_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = _where(
            [
                ("project_id = ?", project_id or None),
                ("ts_ms >= ?", int(since_ms) if since_ms is not None else None),
            ]
        )
        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)
        return [
            {
                "event": event,
                "n": int(n),
                "projects": int(projects),
                "avgElapsedMs": _safe_float(avg_ms),
                "p95ElapsedMs": _safe_float(p95_ms),
                "lastTsMs": int(last_ts) if last_ts is not None else None,
            }
            for event, n, projects, avg_ms, p95_ms, last_ts in rows
        ]

    def recent(self, *, event: str | None = None, limit: int = 25) -> list[dict[str, Any]]:
        where_sql, params = _where([("event = ?", event or None)])
        params.append(max(1, min(200, int(limit))))
        rows = self.query(RECENT_SQL_TEMPLATE.format(where_sql=where_sql), params)
        return [
            {
                "tsMs": int(ts_ms),
                "event": event_v,
                "projectId": project_id,
                "generation": int(generation),
                "status": status,
                "stats": json.loads(stats_json or "{}"),
            }
            for ts_ms, event_v, project_id, generation, status, stats_json in rows
        ]

    def reset(self) -> None:
        """
        Stop writing and delete the database file.
        """
        self.stop()
        with self._lock:
            self.conn.close()
            self.path.unlink(missing_ok=True)

    def _write(self, rows: list[EventRow]) -> None:
        with self._lock:
            self.conn.executemany(INSERT_EVENTS_SQL, rows)
            # Readers on the same file see the rows right away.
            self.conn.execute("CHECKPOINT;")
        for _ in rows:
            self._pending.task_done()

    def _run(self) -> None:
        self.ensure_schema()
        batch: list[EventRow] = []
        last_write = time.monotonic()

        while not self._closed.is_set():
            try:
                batch.append(self._pending.get(timeout=0.1))
            except queue.Empty:
                pass
            due = time.monotonic() - last_write >= self.flush_interval_s
            if batch and (len(batch) >= self.batch_size or due):
                self._write(batch)
                batch = []
                last_write = time.monotonic()

        while True:
            try:
                batch.append(self._pending.get_nowait())
            except queue.Empty:
                break
        if batch:
            self._write(batch)

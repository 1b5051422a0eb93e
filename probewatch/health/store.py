"""Result store — append-only SQLite time series, one table per check kind.

Writes go through a single connection behind a lock, one transaction per row.
Reads open their own connection; WAL mode keeps them off the writer's path
and gives each query a consistent snapshot of committed rows.

A check name is recorded under one kind only. A database holding the same
name in both tables is refused on open, and a row of the other kind is
refused on append.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from probewatch.health.models import ErrorKind, Failure, Observation, Success
from probewatch.registry import CheckKind

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

TABLES = {
    CheckKind.HTTP: "http_resp",
    CheckKind.PING: "ping_resp",
}

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS http_resp (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        check_name TEXT NOT NULL,
        timestamp REAL NOT NULL,
        latency_ms INTEGER,
        error TEXT,
        error_kind TEXT,
        code INTEGER,
        CHECK ((latency_ms IS NULL) <> (error_kind IS NULL))
    );

    CREATE INDEX IF NOT EXISTS idx_http_resp_timestamp
        ON http_resp (timestamp);

    CREATE INDEX IF NOT EXISTS idx_http_resp_check_name
        ON http_resp (check_name);

    CREATE TABLE IF NOT EXISTS ping_resp (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        check_name TEXT NOT NULL,
        timestamp REAL NOT NULL,
        latency_ms INTEGER,
        error TEXT,
        error_kind TEXT,
        CHECK ((latency_ms IS NULL) <> (error_kind IS NULL))
    );

    CREATE INDEX IF NOT EXISTS idx_ping_resp_timestamp
        ON ping_resp (timestamp);

    CREATE INDEX IF NOT EXISTS idx_ping_resp_check_name
        ON ping_resp (check_name);
"""


class StoreError(Exception):
    """Raised when the store cannot read or write (disk full, locked, corrupt)."""


class ResultStore:
    """SQLite-backed storage for probe observations."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._writer: sqlite3.Connection | None = None
        self._kinds: dict[str, CheckKind] = {}
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _get_writer(self) -> sqlite3.Connection:
        if self._writer is None:
            self._writer = self._connect()
        return self._writer

    def _init_db(self) -> None:
        try:
            with self._write_lock:
                conn = self._get_writer()
                version = conn.execute("PRAGMA user_version").fetchone()[0]
                if version > SCHEMA_VERSION:
                    raise StoreError(
                        f"{self._db_path} has schema version {version}, "
                        f"this build understands up to {SCHEMA_VERSION}"
                    )
                conn.executescript(_SCHEMA)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                conn.commit()
                self._kinds = self._load_kinds(conn)
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialise {self._db_path}: {e}") from e

    def _load_kinds(self, conn: sqlite3.Connection) -> dict[str, CheckKind]:
        kinds: dict[str, CheckKind] = {}
        both: list[str] = []
        for kind, table in TABLES.items():
            for row in conn.execute(f"SELECT DISTINCT check_name FROM {table}"):
                if row[0] in kinds:
                    both.append(row[0])
                kinds[row[0]] = kind
        if both:
            raise StoreError(
                f"{self._db_path} records these checks under both kinds: {', '.join(sorted(both))}"
            )
        return kinds

    def kinds(self) -> dict[str, CheckKind]:
        """Kind each stored check name is recorded under."""
        with self._write_lock:
            return dict(self._kinds)

    # ── Writes ───────────────────────────────────────────────────────────

    def append(self, obs: Observation) -> None:
        """Persist one observation atomically."""
        table = TABLES[obs.kind]
        row: dict[str, Any] = {
            "check_name": obs.check_name,
            "timestamp": obs.timestamp,
            "latency_ms": obs.latency_ms,
            "error": obs.error,
            "error_kind": obs.error_kind.value if obs.error_kind else None,
        }
        columns = "check_name, timestamp, latency_ms, error, error_kind"
        values = ":check_name, :timestamp, :latency_ms, :error, :error_kind"
        if obs.kind is CheckKind.HTTP:
            row["code"] = obs.code
            columns += ", code"
            values += ", :code"

        try:
            with self._write_lock:
                recorded = self._kinds.get(obs.check_name)
                if recorded is not None and recorded is not obs.kind:
                    raise StoreError(
                        f"{obs.check_name} is recorded as {recorded.value}, "
                        f"refusing a {obs.kind.value} observation"
                    )
                conn = self._get_writer()
                with conn:
                    conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({values})", row)
                self._kinds[obs.check_name] = obs.kind
        except sqlite3.Error as e:
            raise StoreError(f"Could not append observation for {obs.check_name}: {e}") from e

    # ── Reads ────────────────────────────────────────────────────────────

    def query_range(
        self, start: float, end: float, check_name: str | None = None,
    ) -> Iterator[Observation]:
        """Yield observations with ``start <= timestamp <= end``, oldest first."""
        name_filter = " AND check_name = :check_name" if check_name is not None else ""
        sql = (
            "SELECT 'http' AS kind, id, check_name, timestamp, latency_ms, error, error_kind, code "
            "FROM http_resp WHERE timestamp >= :start AND timestamp <= :end" + name_filter +
            " UNION ALL "
            "SELECT 'ping' AS kind, id, check_name, timestamp, latency_ms, error, error_kind, NULL "
            "FROM ping_resp WHERE timestamp >= :start AND timestamp <= :end" + name_filter +
            " ORDER BY timestamp, kind, id"
        )
        params = {"start": start, "end": end, "check_name": check_name}
        return self._iter_rows(sql, params)

    def latest(self) -> dict[str, Observation]:
        """Most recent observation per check name."""
        sql = (
            "SELECT 'http' AS kind, id, check_name, timestamp, latency_ms, error, error_kind, code "
            "FROM http_resp WHERE id IN (SELECT MAX(id) FROM http_resp GROUP BY check_name) "
            "UNION ALL "
            "SELECT 'ping' AS kind, id, check_name, timestamp, latency_ms, error, error_kind, NULL "
            "FROM ping_resp WHERE id IN (SELECT MAX(id) FROM ping_resp GROUP BY check_name) "
            "ORDER BY timestamp"
        )
        return {obs.check_name: obs for obs in self._iter_rows(sql, {})}

    def _iter_rows(self, sql: str, params: dict[str, Any]) -> Iterator[Observation]:
        # the connection opens on first iteration, so an unconsumed iterator holds nothing
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Could not open {self._db_path} for reading: {e}") from e
        try:
            for row in conn.execute(sql, params):
                yield _row_to_observation(row)
        except sqlite3.Error as e:
            raise StoreError(f"Query failed: {e}") from e
        finally:
            conn.close()

    def close(self) -> None:
        with self._write_lock:
            if self._writer:
                self._writer.close()
                self._writer = None


def _row_to_observation(row: sqlite3.Row) -> Observation:
    if row["latency_ms"] is not None and row["error_kind"] is None:
        outcome: Success | Failure = Success(latency_ms=row["latency_ms"], code=row["code"])
    elif row["latency_ms"] is None and row["error_kind"] is not None:
        try:
            error_kind = ErrorKind(row["error_kind"])
        except ValueError:
            raise StoreError(f"Unknown error_kind in row {row['id']}: {row['error_kind']!r}") from None
        outcome = Failure(error_kind=error_kind, error_detail=row["error"] or "")
    else:
        raise StoreError(f"Corrupt {row['kind']} row {row['id']}: latency and error both set or both empty")
    return Observation(
        check_name=row["check_name"],
        kind=CheckKind(row["kind"]),
        outcome=outcome,
        timestamp=row["timestamp"],
    )

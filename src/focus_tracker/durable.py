"""Durable (server-side) storage for ingested focus sessions."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import requests

from .config import D1Settings
from .errors import ParameterLimitError, TransientWriteError
from .models import QueuedRecord

logger = logging.getLogger(__name__)

# Hosted D1 rejects statements with more than 100 bound parameters.
MAX_BOUND_PARAMETERS = 100

COLUMNS: tuple[str, ...] = (
    "id",
    "user_id",
    "device_id",
    "app_name",
    "window_title",
    "url",
    "start_time",
    "duration",
    "bundle_id",
    "tab_title",
    "tab_count",
    "document_path",
    "is_full_screen",
    "is_minimized",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS focus_sessions (
    id              TEXT    PRIMARY KEY,
    user_id         TEXT    NOT NULL,
    device_id       TEXT    NOT NULL,
    app_name        TEXT    NOT NULL,
    window_title    TEXT    NOT NULL,
    url             TEXT,
    start_time      REAL    NOT NULL,
    end_time        REAL,
    duration        REAL    NOT NULL DEFAULT 0,
    bundle_id       TEXT,
    tab_title       TEXT,
    tab_count       INTEGER,
    document_path   TEXT,
    is_full_screen  INTEGER DEFAULT 0,
    is_minimized    INTEGER DEFAULT 0,
    synced_at       TEXT    DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_time ON focus_sessions(user_id, start_time);
CREATE INDEX IF NOT EXISTS idx_sessions_device ON focus_sessions(device_id);

CREATE TABLE IF NOT EXISTS api_keys (
    id          TEXT    PRIMARY KEY,
    user_id     TEXT    NOT NULL,
    name        TEXT    NOT NULL,
    key_hash    TEXT    NOT NULL UNIQUE,
    device_id   TEXT    NOT NULL UNIQUE,
    created_at  TEXT    NOT NULL,
    last_used   TEXT
);

CREATE INDEX IF NOT EXISTS idx_keys_user ON api_keys(user_id);
"""


class DurableStore(Protocol):
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the number of changed rows."""

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read statement."""

    def close(self) -> None:
        ...


def build_multi_row_insert(records: Sequence[QueuedRecord]) -> tuple[str, list[Any]]:
    """Build one ``INSERT OR IGNORE`` statement covering every record."""
    if not records:
        raise ValueError("records must not be empty")
    placeholder_row = "(" + ", ".join("?" for _ in COLUMNS) + ")"
    value_rows = ",\n       ".join(placeholder_row for _ in records)
    sql = (
        "INSERT OR IGNORE INTO focus_sessions\n"
        f"       ({', '.join(COLUMNS)})\n"
        f"       VALUES {value_rows}"
    )
    params: list[Any] = []
    for record in records:
        params.extend(record.as_params())
    return sql, params


def write_batch(store: DurableStore, records: Sequence[QueuedRecord]) -> int:
    sql, params = build_multi_row_insert(records)
    return store.execute(sql, params)


class SQLiteDurableStore:
    """Local SQLite stand-in for the hosted store, with the same parameter ceiling."""

    def __init__(
        self,
        path: Path | str = ":memory:",
        *,
        max_bound_parameters: int = MAX_BOUND_PARAMETERS,
    ) -> None:
        self.path = path
        self.max_bound_parameters = max_bound_parameters
        self._conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(SCHEMA)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        self._check_parameters(params)
        with self._lock:
            try:
                cur = self._conn.execute(sql, list(params))
            except sqlite3.Error as exc:
                raise TransientWriteError(f"SQLite write failed: {exc}") from exc
            return cur.rowcount

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self._check_parameters(params)
        with self._lock:
            try:
                rows = self._conn.execute(sql, list(params)).fetchall()
            except sqlite3.Error as exc:
                raise TransientWriteError(f"SQLite query failed: {exc}") from exc
        return [dict(row) for row in rows]

    def count_sessions(self) -> int:
        return int(self.query("SELECT COUNT(*) AS n FROM focus_sessions")[0]["n"])

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _check_parameters(self, params: Sequence[Any]) -> None:
        if len(params) > self.max_bound_parameters:
            raise ParameterLimitError(
                f"{len(params)} bound parameters exceeds limit of {self.max_bound_parameters}"
            )


class D1DurableStore:
    """Cloudflare D1 accessed over its REST query API."""

    def __init__(
        self,
        settings: D1Settings,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.settings = settings
        self._session = session or requests.Session()
        self._timeout = timeout

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        result = self._post(sql, params)
        return int(result.get("meta", {}).get("changes", 0))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return list(self._post(sql, params).get("results", []))

    def close(self) -> None:
        self._session.close()

    def _post(self, sql: str, params: Sequence[Any]) -> dict[str, Any]:
        try:
            response = self._session.post(
                self.settings.query_url,
                json={"sql": sql, "params": list(params)},
                headers={"Authorization": f"Bearer {self.settings.api_token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransientWriteError(f"D1 request failed: {exc}") from exc

        if not response.ok:
            raise TransientWriteError(f"D1 API error ({response.status_code}): {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientWriteError("D1 returned a non-JSON body") from exc

        results = data.get("result") or []
        if not data.get("success") or not results or not results[0].get("success"):
            errors = data.get("errors") or [{}]
            message = errors[0].get("message", "Unknown D1 error")
            raise TransientWriteError(f"D1 query failed: {message}")
        return results[0]


def open_durable_store(db_path: Path, max_bound_parameters: int = MAX_BOUND_PARAMETERS) -> DurableStore:
    """Use D1 when its credentials are in the environment, else a SQLite file."""
    d1 = D1Settings.from_env()
    if d1.is_configured:
        logger.info("Using Cloudflare D1 database %s", d1.database_id)
        return D1DurableStore(d1)
    logger.info("Using SQLite durable store at %s", db_path)
    return SQLiteDurableStore(db_path, max_bound_parameters=max_bound_parameters)

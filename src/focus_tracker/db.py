"""SQLite database layer for locally recorded focus sessions."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

from .models import FocusSession

WATERMARK_KEY = "last_synced_start_time"

_SESSION_COLUMNS = (
    "id",
    "app_name",
    "window_title",
    "url",
    "start_time",
    "end_time",
    "duration",
    "bundle_id",
    "tab_title",
    "tab_count",
    "document_path",
    "is_full_screen",
    "is_minimized",
)


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS focus_sessions (
            id TEXT PRIMARY KEY,
            app_name TEXT NOT NULL,
            window_title TEXT NOT NULL,
            url TEXT,
            start_time REAL NOT NULL,
            end_time REAL NOT NULL,
            duration REAL NOT NULL DEFAULT 0,
            bundle_id TEXT,
            tab_title TEXT,
            tab_count INTEGER,
            document_path TEXT,
            is_full_screen INTEGER NOT NULL DEFAULT 0,
            is_minimized INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_start_time
            ON focus_sessions(start_time);

        CREATE TABLE IF NOT EXISTS sync_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """
    )


def _session_params(session: FocusSession) -> tuple[object, ...]:
    return (
        session.id,
        session.app_name,
        session.window_title,
        session.url,
        session.start_time,
        session.end_time,
        session.duration,
        session.bundle_id,
        session.tab_title,
        session.tab_count,
        session.document_path,
        1 if session.is_full_screen else 0,
        1 if session.is_minimized else 0,
    )


def insert_session(conn: sqlite3.Connection, session: FocusSession) -> None:
    placeholders = ", ".join("?" for _ in _SESSION_COLUMNS)
    conn.execute(
        f"INSERT INTO focus_sessions ({', '.join(_SESSION_COLUMNS)}) VALUES ({placeholders})",
        _session_params(session),
    )


def update_session(conn: sqlite3.Connection, session: FocusSession) -> None:
    """Persist the closing of a session; only end_time and duration change."""
    cur = conn.execute(
        "UPDATE focus_sessions SET end_time = ?, duration = ? WHERE id = ?",
        (session.end_time, session.duration, session.id),
    )
    if cur.rowcount == 0:
        raise ValueError(f"No session found for id={session.id}")


def row_to_session(row: sqlite3.Row) -> FocusSession:
    return FocusSession(
        id=row["id"],
        app_name=row["app_name"],
        window_title=row["window_title"],
        url=row["url"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration=row["duration"],
        bundle_id=row["bundle_id"],
        tab_title=row["tab_title"],
        tab_count=row["tab_count"],
        document_path=row["document_path"],
        is_full_screen=bool(row["is_full_screen"]),
        is_minimized=bool(row["is_minimized"]),
    )


def query_unsynced(
    conn: sqlite3.Connection, since: float, limit: int
) -> list[FocusSession]:
    """Closed sessions that started after the watermark, oldest first."""
    rows = conn.execute(
        f"""
        SELECT {', '.join(_SESSION_COLUMNS)}
        FROM focus_sessions
        WHERE start_time > ? AND duration > 0
        ORDER BY start_time
        LIMIT ?
        """,
        (since, limit),
    )
    return [row_to_session(row) for row in rows]


def fetch_session(conn: sqlite3.Connection, session_id: str) -> Optional[FocusSession]:
    row = conn.execute(
        f"SELECT {', '.join(_SESSION_COLUMNS)} FROM focus_sessions WHERE id = ?",
        (session_id,),
    ).fetchone()
    return row_to_session(row) if row else None


def fetch_summary_by_day(
    conn: sqlite3.Connection, day: datetime
) -> list[sqlite3.Row]:
    """Return closed seconds and session counts per app/window/url for the local day."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return list(
        conn.execute(
            """
            SELECT
                app_name,
                window_title,
                url,
                SUM(duration) AS seconds,
                COUNT(*) AS sessions
            FROM focus_sessions
            WHERE start_time >= ? AND start_time < ? AND duration > 0
            GROUP BY app_name, window_title, url
            ORDER BY seconds DESC;
            """,
            (start.timestamp(), end.timestamp()),
        )
    )


def get_watermark(conn: sqlite3.Connection) -> float:
    row = conn.execute(
        "SELECT value FROM sync_state WHERE key = ?", (WATERMARK_KEY,)
    ).fetchone()
    return float(row["value"]) if row else 0.0


def set_watermark(conn: sqlite3.Connection, value: float) -> None:
    conn.execute(
        """
        INSERT INTO sync_state (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (WATERMARK_KEY, repr(float(value))),
    )


class LocalStore:
    """Thread-safe on-device session store shared by recorder and sync."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = open_database(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()

    def insert(self, session: FocusSession) -> None:
        with self._lock:
            insert_session(self._conn, session)

    def update(self, session: FocusSession) -> None:
        with self._lock:
            update_session(self._conn, session)

    def query_unsynced(self, since: float, limit: int) -> list[FocusSession]:
        with self._lock:
            return query_unsynced(self._conn, since, limit)

    def get(self, session_id: str) -> Optional[FocusSession]:
        with self._lock:
            return fetch_session(self._conn, session_id)

    @property
    def watermark(self) -> float:
        with self._lock:
            return get_watermark(self._conn)

    @watermark.setter
    def watermark(self, value: float) -> None:
        with self._lock:
            set_watermark(self._conn, value)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

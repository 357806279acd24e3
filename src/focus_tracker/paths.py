"""Where the recorder and the ingestion server keep their files."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "FocusTracker"
DATA_DIR_ENV = "FOCUS_TRACKER_DATA_DIR"

_dirs = PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True)


def _ensure(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Databases live here; ``FOCUS_TRACKER_DATA_DIR`` overrides the platform default."""
    override = os.environ.get(DATA_DIR_ENV)
    return _ensure(Path(override).expanduser() if override else Path(_dirs.user_data_path))


def get_log_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return _ensure(Path(override).expanduser() / "logs")
    return _ensure(Path(_dirs.user_log_path))


def get_db_path() -> Path:
    return get_data_dir() / "sessions.sqlite3"


def get_server_db_path() -> Path:
    return get_data_dir() / "ingest.sqlite3"


def get_log_path() -> Path:
    return get_log_dir() / "recorder.log"

from __future__ import annotations

import sys
from datetime import datetime

import pytest
from typer.testing import CliRunner

from conftest import make_session
from focus_tracker.cli import app
from focus_tracker.db import LocalStore
from focus_tracker.durable import SQLiteDurableStore
from focus_tracker.ingest import ApiKeyRegistry

runner = CliRunner()


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    for command in ("collect", "sync", "summary", "serve", "issue-key"):
        assert command in result.output


def test_issue_key_prints_a_resolvable_key(tmp_path) -> None:
    db = tmp_path / "ingest.sqlite3"
    result = runner.invoke(
        app, ["issue-key", "--user", "user-1", "--device", "laptop", "--db", str(db)]
    )

    assert result.exit_code == 0
    key = result.output.strip().splitlines()[-1]
    assert key.startswith("gk_")

    store = SQLiteDurableStore(db)
    try:
        caller = ApiKeyRegistry(store).resolve(f"Bearer {key}")
    finally:
        store.close()
    assert caller.device_id == "laptop"


def test_summary_prints_top_apps(tmp_path) -> None:
    db = tmp_path / "sessions.sqlite3"
    base = datetime(2025, 3, 1, 9, 0).timestamp()
    store = LocalStore(db)
    store.insert(make_session("a", base, 3600, app="Cursor", title="main.py"))
    store.insert(make_session("b", base + 3700, 90, app="Slack", title="general"))
    store.close()

    result = runner.invoke(app, ["summary", "--date", "2025-03-01", "--db", str(db)])

    assert result.exit_code == 0
    assert "Summary for 2025-03-01" in result.output
    assert "Focused time: 01:01:30 across 2 sessions" in result.output
    assert "Cursor" in result.output


def test_summary_for_empty_day(tmp_path) -> None:
    result = runner.invoke(
        app, ["summary", "--date", "2025-03-02", "--db", str(tmp_path / "empty.sqlite3")]
    )

    assert result.exit_code == 0
    assert "No focus sessions recorded" in result.output


def test_sync_with_nothing_pending(tmp_path) -> None:
    result = runner.invoke(
        app,
        [
            "sync",
            "--db",
            str(tmp_path / "sessions.sqlite3"),
            "--server-url",
            "http://127.0.0.1:9",
            "--api-key",
            "gk_test",
        ],
    )

    assert result.exit_code == 0
    assert "Synced 0 sessions." in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="sampling is available on Windows")
def test_collect_exits_when_sampling_is_unavailable(tmp_path) -> None:
    result = runner.invoke(app, ["collect", "--db", str(tmp_path / "sessions.sqlite3")])

    assert result.exit_code == 1

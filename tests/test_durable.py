from __future__ import annotations

import pytest
import requests

from conftest import make_record
from focus_tracker.config import D1Settings
from focus_tracker.durable import (
    COLUMNS,
    D1DurableStore,
    SQLiteDurableStore,
    build_multi_row_insert,
    open_durable_store,
    write_batch,
)
from focus_tracker.errors import ParameterLimitError, TransientWriteError


def test_multi_row_insert_has_one_placeholder_group_per_record() -> None:
    records = [make_record(f"id-{n}") for n in range(3)]
    sql, params = build_multi_row_insert(records)

    assert sql.startswith("INSERT OR IGNORE INTO focus_sessions")
    assert sql.count("(?, ") == 3
    assert len(params) == 3 * len(COLUMNS)
    assert params[0] == "id-0"
    assert params[len(COLUMNS)] == "id-1"


def test_multi_row_insert_rejects_empty_batch() -> None:
    with pytest.raises(ValueError):
        build_multi_row_insert([])


def test_write_batch_is_idempotent() -> None:
    store = SQLiteDurableStore()
    records = [make_record(f"id-{n}") for n in range(5)]

    assert write_batch(store, records) == 5
    assert write_batch(store, records) == 0
    assert store.count_sessions() == 5
    store.close()


def test_parameter_ceiling_is_enforced() -> None:
    store = SQLiteDurableStore(max_bound_parameters=100)
    records = [make_record(f"id-{n}") for n in range(8)]

    with pytest.raises(ParameterLimitError):
        write_batch(store, records)
    assert store.count_sessions() == 0

    assert write_batch(store, records[:7]) == 7
    store.close()


def test_sqlite_errors_become_transient_write_errors() -> None:
    store = SQLiteDurableStore()
    with pytest.raises(TransientWriteError):
        store.execute("INSERT INTO no_such_table VALUES (?)", [1])
    store.close()


def test_open_durable_store_defaults_to_sqlite(tmp_path) -> None:
    store = open_durable_store(tmp_path / "ingest.sqlite3")
    try:
        assert isinstance(store, SQLiteDurableStore)
    finally:
        store.close()


def test_open_durable_store_uses_d1_when_configured(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("CF_ACCOUNT_ID", "acct")
    monkeypatch.setenv("CF_API_TOKEN", "token")
    monkeypatch.setenv("CF_D1_DATABASE_ID", "db")

    store = open_durable_store(tmp_path / "ingest.sqlite3")
    try:
        assert isinstance(store, D1DurableStore)
        assert store.settings.query_url.endswith("/accounts/acct/d1/database/db/query")
    finally:
        store.close()


class _FakeResponse:
    def __init__(self, status_code: int, body) -> None:
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _FakeSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []
        self.closed = False

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


def _d1(session: _FakeSession) -> D1DurableStore:
    return D1DurableStore(
        D1Settings(account_id="acct", api_token="secret", database_id="db"),
        session=session,
    )


def test_d1_execute_posts_sql_and_returns_changes() -> None:
    session = _FakeSession(
        _FakeResponse(
            200,
            {"success": True, "result": [{"success": True, "meta": {"changes": 7}}]},
        )
    )
    store = _d1(session)

    assert write_batch(store, [make_record(f"id-{n}") for n in range(7)]) == 7
    call = session.calls[0]
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert len(call["json"]["params"]) == 7 * len(COLUMNS)
    assert call["json"]["sql"].startswith("INSERT OR IGNORE")


def test_d1_query_returns_result_rows() -> None:
    session = _FakeSession(
        _FakeResponse(
            200,
            {"success": True, "result": [{"success": True, "results": [{"n": 1}]}]},
        )
    )
    assert _d1(session).query("SELECT 1 AS n") == [{"n": 1}]


@pytest.mark.parametrize(
    "session",
    [
        _FakeSession(_FakeResponse(500, {"success": False})),
        _FakeSession(_FakeResponse(200, {"success": False, "errors": [{"message": "boom"}]})),
        _FakeSession(_FakeResponse(200, ValueError("not json"))),
        _FakeSession(error=requests.ConnectionError("down")),
    ],
)
def test_d1_failures_are_transient(session) -> None:
    with pytest.raises(TransientWriteError):
        _d1(session).execute("DELETE FROM focus_sessions")

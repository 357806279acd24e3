from __future__ import annotations

from typing import Optional

import pytest

from focus_tracker.errors import SamplingError
from focus_tracker.models import FocusContext, FocusSession, QueuedRecord


class FakeClock:
    def __init__(self, start: float = 1_740_600_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class ScriptedSampler:
    """Returns whatever context the test sets; ``None`` means unavailable."""

    def __init__(self, context: Optional[FocusContext] = None) -> None:
        self.context = context
        self.calls = 0

    def sample(self) -> FocusContext:
        self.calls += 1
        if self.context is None:
            raise SamplingError("permission denied")
        return self.context


class FakeIdle:
    def __init__(self, seconds: float = 0.0) -> None:
        self.seconds = seconds

    def seconds_since_input(self) -> float:
        return self.seconds


class MemorySink:
    def __init__(self) -> None:
        self.sessions: dict[str, FocusSession] = {}
        self.inserted: list[str] = []
        self.updated: list[str] = []

    def insert(self, session: FocusSession) -> None:
        self.sessions[session.id] = session
        self.inserted.append(session.id)

    def update(self, session: FocusSession) -> None:
        self.updated.append(session.id)

    def open_ids(self) -> list[str]:
        return [sid for sid in self.inserted if sid not in self.updated]

    def closed(self) -> list[FocusSession]:
        return [self.sessions[sid] for sid in self.updated]


def make_context(app: str = "Google Chrome", title: str = "GitHub", **kwargs) -> FocusContext:
    return FocusContext(app_name=app, window_title=title, **kwargs)


def make_session(
    session_id: str, start: float, duration: float = 60.0, **kwargs
) -> FocusSession:
    session = FocusSession.start(make_context(**kwargs), start, session_id=session_id)
    if duration:
        session.finish(start + duration)
    return session


def make_record(session_id: str = "550e8400-e29b-41d4-a716-446655440000", **overrides) -> QueuedRecord:
    values = dict(
        id=session_id,
        user_id="user-1",
        device_id="device-1",
        app_name="Google Chrome",
        window_title="GitHub - gecko",
        url="https://github.com/user/gecko",
        start_time=1740600000.0,
        duration=120.0,
        bundle_id="com.google.Chrome",
        tab_title="gecko: Screen time tracker",
        tab_count=12,
        document_path=None,
        is_full_screen=False,
        is_minimized=False,
    )
    values.update(overrides)
    return QueuedRecord(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture(autouse=True)
def _no_d1_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CF_ACCOUNT_ID", "CF_API_TOKEN", "CF_D1_DATABASE_ID"):
        monkeypatch.delenv(name, raising=False)

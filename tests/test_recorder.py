from __future__ import annotations

import random
from datetime import timedelta

import pytest

from conftest import FakeClock, FakeIdle, MemorySink, ScriptedSampler, make_context
from focus_tracker.config import RecorderSettings
from focus_tracker.recorder import RecorderState, SessionRecorder, Signal, next_state


def _recorder(
    clock: FakeClock,
    sink: MemorySink,
    sampler: ScriptedSampler,
    idle: FakeIdle | None = None,
    low_power: bool = False,
) -> SessionRecorder:
    return SessionRecorder(
        sampler,
        sink,
        RecorderSettings(),
        idle_source=idle,
        clock=clock,
        low_power=lambda: low_power,
    )


def test_start_opens_exactly_one_session(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()

    assert recorder.state is RecorderState.ACTIVE
    assert len(sink.inserted) == 1
    session = recorder.current_session
    assert session is not None and session.is_active
    assert session.start_time == clock.now


def test_app_switch_closes_previous_and_opens_next(clock, sink) -> None:
    sampler = ScriptedSampler(make_context("Google Chrome", "GitHub"))
    recorder = _recorder(clock, sink, sampler)
    recorder.start()
    first_id = recorder.current_session.id

    clock.advance(42)
    sampler.context = make_context("Cursor", "main.py")
    recorder.handle(Signal.APP_ACTIVATED)

    assert sink.updated == [first_id]
    closed = sink.sessions[first_id]
    assert closed.duration == pytest.approx(42)
    assert closed.duration == closed.end_time - closed.start_time
    assert sink.open_ids() == [recorder.current_session.id]
    assert recorder.current_session.app_name == "Cursor"


def test_app_switch_detected_by_fallback_tick(clock, sink) -> None:
    sampler = ScriptedSampler(make_context("Google Chrome", "GitHub"))
    recorder = _recorder(clock, sink, sampler)
    recorder.start()

    clock.advance(3)
    sampler.context = make_context("Slack", "general")
    recorder.tick()

    assert len(sink.inserted) == 2
    assert recorder.current_session.app_name == "Slack"


def test_same_context_does_not_fragment(clock, sink) -> None:
    sampler = ScriptedSampler(make_context())
    recorder = _recorder(clock, sink, sampler)
    recorder.start()
    for _ in range(5):
        clock.advance(3)
        recorder.tick()
    recorder.handle(Signal.APP_ACTIVATED)

    assert len(sink.inserted) == 1
    assert sink.updated == []


def test_url_change_switches_immediately(clock, sink) -> None:
    sampler = ScriptedSampler(make_context(title="Docs", url="https://a.example"))
    recorder = _recorder(clock, sink, sampler)
    recorder.start()

    clock.advance(3)
    sampler.context = make_context(title="Docs", url="https://b.example")
    recorder.tick()

    assert len(sink.inserted) == 2
    assert recorder.current_session.url == "https://b.example"


def test_title_only_change_is_debounced(clock, sink) -> None:
    sampler = ScriptedSampler(make_context("Cursor", "a.py"))
    recorder = _recorder(clock, sink, sampler)
    recorder.start()
    first_id = recorder.current_session.id

    observed = clock.advance(3)
    sampler.context = make_context("Cursor", "b.py")
    delay = recorder.tick()

    assert len(sink.inserted) == 1
    assert delay == pytest.approx(2.0)

    clock.advance(2)
    recorder.tick()

    assert len(sink.inserted) == 2
    assert sink.sessions[first_id].end_time == observed
    assert recorder.current_session.window_title == "b.py"
    assert recorder.current_session.start_time == observed


def test_reverted_title_cancels_pending_switch(clock, sink) -> None:
    sampler = ScriptedSampler(make_context("Cursor", "a.py"))
    recorder = _recorder(clock, sink, sampler)
    recorder.start()

    clock.advance(1)
    sampler.context = make_context("Cursor", "a.py - saving")
    recorder.tick()
    clock.advance(1)
    sampler.context = make_context("Cursor", "a.py")
    recorder.tick()
    clock.advance(5)
    recorder.tick()

    assert len(sink.inserted) == 1


def test_idle_finalizes_without_replacement(clock, sink) -> None:
    idle = FakeIdle(0)
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()), idle)
    recorder.start()
    first_id = recorder.current_session.id

    clock.advance(100)
    idle.seconds = 61
    recorder.tick()

    assert recorder.state is RecorderState.IDLE
    assert recorder.current_session is None
    assert sink.updated == [first_id]
    closed = sink.sessions[first_id]
    # Time without input is not attributed to the app.
    assert closed.duration == pytest.approx(39)
    assert len(sink.inserted) == 1


def test_input_after_idle_opens_exactly_one_session(clock, sink) -> None:
    idle = FakeIdle(0)
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()), idle)
    recorder.start()
    clock.advance(100)
    idle.seconds = 70
    recorder.tick()

    clock.advance(30)
    recorder.tick()
    assert recorder.state is RecorderState.IDLE
    assert len(sink.inserted) == 1

    idle.seconds = 0.5
    recorder.tick()
    assert recorder.state is RecorderState.ACTIVE
    assert len(sink.inserted) == 2
    assert sink.open_ids() == [recorder.current_session.id]


@pytest.mark.parametrize(
    ("pause", "resume", "paused_state"),
    [
        (Signal.SCREEN_LOCKED, Signal.SCREEN_UNLOCKED, RecorderState.LOCKED),
        (Signal.WILL_SLEEP, Signal.DID_WAKE, RecorderState.ASLEEP),
        (Signal.IDLE_TIMEOUT, Signal.USER_INPUT, RecorderState.IDLE),
    ],
)
def test_pause_and_resume_signals(clock, sink, pause, resume, paused_state) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()

    clock.advance(10)
    assert recorder.handle(pause) is paused_state
    assert recorder.current_session is None
    assert sink.open_ids() == []

    clock.advance(600)
    recorder.tick()
    assert len(sink.inserted) == 1

    assert recorder.handle(resume) is RecorderState.ACTIVE
    assert len(sink.inserted) == 2
    assert recorder.current_session.start_time == clock.now


def test_app_activation_resumes_from_paused_state(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()
    recorder.handle(Signal.SCREEN_LOCKED)

    assert recorder.handle(Signal.APP_ACTIVATED) is RecorderState.ACTIVE
    assert len(sink.open_ids()) == 1


def test_wake_while_locked_stays_locked(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()
    recorder.handle(Signal.SCREEN_LOCKED)
    recorder.handle(Signal.WILL_SLEEP)
    recorder.handle(Signal.SCREEN_LOCKED)

    assert recorder.handle(Signal.DID_WAKE) is RecorderState.LOCKED
    assert sink.open_ids() == []


def test_sampling_error_keeps_session_open(clock, sink) -> None:
    sampler = ScriptedSampler(make_context())
    recorder = _recorder(clock, sink, sampler)
    recorder.start()
    session_id = recorder.current_session.id

    sampler.context = None
    for _ in range(3):
        clock.advance(3)
        recorder.tick()
    recorder.handle(Signal.APP_ACTIVATED)

    assert recorder.state is RecorderState.ACTIVE
    assert recorder.current_session.id == session_id
    assert sink.updated == []


def test_unavailable_on_resume_opens_session_on_next_good_sample(clock, sink) -> None:
    sampler = ScriptedSampler(make_context())
    recorder = _recorder(clock, sink, sampler)
    recorder.start()
    recorder.handle(Signal.SCREEN_LOCKED)

    sampler.context = None
    recorder.handle(Signal.SCREEN_UNLOCKED)
    assert recorder.state is RecorderState.ACTIVE
    assert recorder.current_session is None

    sampler.context = make_context("Finder", "Downloads")
    clock.advance(3)
    recorder.tick()
    assert recorder.current_session.app_name == "Finder"
    assert len(sink.open_ids()) == 1


def test_stop_finalizes_and_ignores_later_signals(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()
    clock.advance(5)
    recorder.stop()

    assert recorder.state is RecorderState.STOPPED
    assert sink.open_ids() == []
    assert recorder.handle(Signal.USER_INPUT) is RecorderState.STOPPED
    assert len(sink.inserted) == 1


def test_adaptive_interval_tiers_and_snap_back(clock, sink) -> None:
    sampler = ScriptedSampler(make_context())
    recorder = _recorder(clock, sink, sampler)
    recorder.start()

    assert recorder.current_interval() == pytest.approx(3.0)
    clock.advance(31)
    assert recorder.tick() == pytest.approx(6.0)
    for _ in range(3):
        clock.advance(100)
        recorder.tick()
    assert recorder.current_interval() == pytest.approx(12.0)

    sampler.context = make_context("Terminal", "zsh")
    clock.advance(12)
    assert recorder.tick() == pytest.approx(3.0)
    assert len(sink.inserted) == 2


def test_low_power_stretches_interval(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()), low_power=True)
    recorder.start()

    assert recorder.current_interval() == pytest.approx(4.5)
    clock.advance(400)
    assert recorder.current_interval() == pytest.approx(18.0)


def test_timer_gap_is_treated_as_sleep(clock, sink) -> None:
    recorder = _recorder(clock, sink, ScriptedSampler(make_context()))
    recorder.start()
    first_id = recorder.current_session.id
    clock.advance(3)
    recorder.tick()

    clock.advance(3600)
    recorder.tick()

    assert sink.sessions[first_id].duration == pytest.approx(3)
    assert recorder.state is RecorderState.ACTIVE
    assert recorder.current_session.start_time == clock.now


def test_every_state_signal_pair_is_defined() -> None:
    for state in RecorderState:
        for signal in Signal:
            assert isinstance(next_state(state, signal), RecorderState)
    assert next_state(RecorderState.STOPPED, Signal.USER_INPUT) is RecorderState.STOPPED


def test_random_sequences_keep_at_most_one_open_session(clock) -> None:
    rng = random.Random(1234)
    contexts = [
        make_context("Google Chrome", "GitHub", url="https://github.com"),
        make_context("Google Chrome", "GitHub", url="https://example.com"),
        make_context("Cursor", "a.py"),
        make_context("Cursor", "b.py"),
        None,
    ]
    for _ in range(20):
        sink = MemorySink()
        sampler = ScriptedSampler(contexts[0])
        recorder = SessionRecorder(
            sampler,
            sink,
            RecorderSettings(title_debounce=timedelta(seconds=2)),
            clock=clock,
        )
        recorder.start()
        for _ in range(200):
            clock.advance(rng.choice([0.5, 1, 2, 3, 7]))
            sampler.context = rng.choice(contexts)
            if rng.random() < 0.3:
                recorder.handle(rng.choice(list(Signal)))
            else:
                recorder.tick()
            open_ids = sink.open_ids()
            assert len(open_ids) <= 1
            current = recorder.current_session
            assert open_ids == ([current.id] if current else [])
        recorder.stop()
        assert sink.open_ids() == []
        for session in sink.closed():
            assert session.duration == session.end_time - session.start_time
            assert session.duration >= 0

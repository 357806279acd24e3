"""Session recorder: turns sampled foreground contexts into focus sessions.

The recorder is a single explicit state machine. Every (state, signal) pair is
listed in ``_TRANSITIONS`` and all side effects of entering a state live in
:meth:`SessionRecorder._enter`. The recorder does not own a thread; a
:class:`~focus_tracker.runner.BackgroundLoop` calls :meth:`SessionRecorder.tick`
and sleeps for the delay it returns, while OS hooks may call
:meth:`SessionRecorder.handle` from any thread.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from .config import RecorderSettings
from .errors import SamplingError
from .models import FocusContext, FocusSession

if TYPE_CHECKING:
    from .sampler import ContextSampler, IdleSource

logger = logging.getLogger(__name__)


class RecorderState(str, Enum):
    STOPPED = "stopped"
    ACTIVE = "active"
    IDLE = "idle"
    LOCKED = "locked"
    ASLEEP = "asleep"


class Signal(str, Enum):
    APP_ACTIVATED = "app_activated"
    USER_INPUT = "user_input"
    IDLE_TIMEOUT = "idle_timeout"
    SCREEN_LOCKED = "screen_locked"
    SCREEN_UNLOCKED = "screen_unlocked"
    WILL_SLEEP = "will_sleep"
    DID_WAKE = "did_wake"


_S = RecorderState
_TRANSITIONS: dict[tuple[RecorderState, Signal], RecorderState] = {
    (_S.ACTIVE, Signal.APP_ACTIVATED): _S.ACTIVE,
    (_S.ACTIVE, Signal.USER_INPUT): _S.ACTIVE,
    (_S.ACTIVE, Signal.IDLE_TIMEOUT): _S.IDLE,
    (_S.ACTIVE, Signal.SCREEN_LOCKED): _S.LOCKED,
    (_S.ACTIVE, Signal.SCREEN_UNLOCKED): _S.ACTIVE,
    (_S.ACTIVE, Signal.WILL_SLEEP): _S.ASLEEP,
    (_S.ACTIVE, Signal.DID_WAKE): _S.ACTIVE,
    (_S.IDLE, Signal.APP_ACTIVATED): _S.ACTIVE,
    (_S.IDLE, Signal.USER_INPUT): _S.ACTIVE,
    (_S.IDLE, Signal.IDLE_TIMEOUT): _S.IDLE,
    (_S.IDLE, Signal.SCREEN_LOCKED): _S.LOCKED,
    (_S.IDLE, Signal.SCREEN_UNLOCKED): _S.ACTIVE,
    (_S.IDLE, Signal.WILL_SLEEP): _S.ASLEEP,
    (_S.IDLE, Signal.DID_WAKE): _S.ACTIVE,
    (_S.LOCKED, Signal.APP_ACTIVATED): _S.ACTIVE,
    (_S.LOCKED, Signal.USER_INPUT): _S.ACTIVE,
    (_S.LOCKED, Signal.IDLE_TIMEOUT): _S.LOCKED,
    (_S.LOCKED, Signal.SCREEN_LOCKED): _S.LOCKED,
    (_S.LOCKED, Signal.SCREEN_UNLOCKED): _S.ACTIVE,
    (_S.LOCKED, Signal.WILL_SLEEP): _S.ASLEEP,
    # Waking up lands on the lock screen; only an unlock resumes tracking.
    (_S.LOCKED, Signal.DID_WAKE): _S.LOCKED,
    (_S.ASLEEP, Signal.APP_ACTIVATED): _S.ACTIVE,
    (_S.ASLEEP, Signal.USER_INPUT): _S.ACTIVE,
    (_S.ASLEEP, Signal.IDLE_TIMEOUT): _S.ASLEEP,
    (_S.ASLEEP, Signal.SCREEN_LOCKED): _S.LOCKED,
    (_S.ASLEEP, Signal.SCREEN_UNLOCKED): _S.ACTIVE,
    (_S.ASLEEP, Signal.WILL_SLEEP): _S.ASLEEP,
    (_S.ASLEEP, Signal.DID_WAKE): _S.ACTIVE,
}


def next_state(state: RecorderState, signal: Signal) -> RecorderState:
    """Pure transition function; signals are ignored while stopped."""
    if state is RecorderState.STOPPED:
        return state
    return _TRANSITIONS[(state, signal)]


class SessionSink(Protocol):
    def insert(self, session: FocusSession) -> None:
        ...

    def update(self, session: FocusSession) -> None:
        ...


@dataclass(slots=True)
class _PendingTitle:
    context: FocusContext
    observed_at: float
    commit_at: float


class SessionRecorder:
    """Owns the open session and the capture state machine."""

    def __init__(
        self,
        sampler: ContextSampler,
        sink: SessionSink,
        settings: Optional[RecorderSettings] = None,
        *,
        idle_source: Optional[IdleSource] = None,
        clock: Callable[[], float] = time.time,
        low_power: Callable[[], bool] = lambda: False,
    ) -> None:
        self.settings = settings or RecorderSettings()
        self._sampler = sampler
        self._sink = sink
        self._idle_source = idle_source
        self._clock = clock
        self._low_power = low_power
        self._lock = threading.RLock()
        self._state = RecorderState.STOPPED
        self._session: Optional[FocusSession] = None
        self._last_context: Optional[FocusContext] = None
        self._pending: Optional[_PendingTitle] = None
        self._last_change_time = clock()
        self._last_tick: Optional[float] = None

    @property
    def state(self) -> RecorderState:
        with self._lock:
            return self._state

    @property
    def current_session(self) -> Optional[FocusSession]:
        with self._lock:
            return self._session

    def start(self) -> None:
        with self._lock:
            if self._state is not RecorderState.STOPPED:
                return
            now = self._clock()
            self._last_change_time = now
            self._last_tick = now
            self._set_state(RecorderState.ACTIVE, now)

    def stop(self) -> None:
        with self._lock:
            if self._state is RecorderState.STOPPED:
                return
            self._set_state(RecorderState.STOPPED, self._clock())

    def handle(self, signal: Signal) -> RecorderState:
        """Apply an external signal and return the resulting state."""
        with self._lock:
            now = self._clock()
            target = next_state(self._state, signal)
            if target is not self._state:
                self._set_state(target, now)
            elif target is RecorderState.ACTIVE and signal is Signal.APP_ACTIVATED:
                self._resample(now)
            return self._state

    def tick(self) -> float:
        """Run one timer step and return the delay until the next one."""
        with self._lock:
            now = self._clock()
            slept = (
                self._last_tick is not None
                and now - self._last_tick > self.settings.sleep_gap.total_seconds()
            )
            last_tick = self._last_tick
            self._last_tick = now

            if self._state is RecorderState.ACTIVE:
                if slept and last_tick is not None:
                    logger.info("Timer gap of %.0fs; treating as system sleep.", now - last_tick)
                    self._set_state(RecorderState.ASLEEP, last_tick)
                    self._set_state(RecorderState.ACTIVE, now)
                else:
                    self._tick_active(now)
            elif self._state is RecorderState.IDLE:
                idle_for = self._seconds_idle()
                if idle_for is not None and idle_for < self.settings.idle_threshold.total_seconds():
                    self._set_state(RecorderState.ACTIVE, now)
            return self._next_delay(now)

    def current_interval(self) -> float:
        """Adaptive fallback polling interval in seconds."""
        with self._lock:
            return self._interval(self._clock())

    def _tick_active(self, now: float) -> None:
        idle_for = self._seconds_idle()
        if idle_for is not None and idle_for >= self.settings.idle_threshold.total_seconds():
            logger.debug("No input for %.0fs; going idle.", idle_for)
            self._set_state(RecorderState.IDLE, now - idle_for)
            return
        self._commit_pending(now)
        self._resample(now)

    def _set_state(self, new_state: RecorderState, at: float) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        self._state = new_state
        logger.info("Recorder %s -> %s", old_state.value, new_state.value)
        self._enter(new_state, at)

    def _enter(self, state: RecorderState, at: float) -> None:
        if state is RecorderState.ACTIVE:
            self._last_tick = at
            self._resample(at)
            return
        # Stopped, idle, locked and asleep all close the session without a replacement.
        self._pending = None
        self._finalize(at)

    def _resample(self, now: float) -> None:
        try:
            context = self._sampler.sample()
        except SamplingError as exc:
            logger.debug("Context unavailable: %s", exc)
            return
        self._observe(context, now)

    def _observe(self, context: FocusContext, now: float) -> None:
        previous = self._last_context
        if self._session is None or previous is None:
            self._pending = None
            self._switch(context, now)
            return

        if not context.same_app(previous) or context.url != previous.url:
            self._pending = None
            self._switch(context, now)
            return

        if context.window_title == previous.window_title:
            # Title reverted before the debounce expired.
            self._pending = None
            return

        pending = self._pending
        if pending is None or pending.context.window_title != context.window_title:
            self._pending = _PendingTitle(
                context=context,
                observed_at=now,
                commit_at=now + self.settings.title_debounce.total_seconds(),
            )
        if self.settings.title_debounce.total_seconds() <= 0:
            self._commit_pending(now)

    def _commit_pending(self, now: float) -> None:
        pending = self._pending
        if pending is None or now < pending.commit_at:
            return
        self._pending = None
        self._switch(pending.context, pending.observed_at)

    def _switch(self, context: FocusContext, at: float) -> None:
        self._finalize(at)
        self._last_context = context
        self._last_change_time = at
        session = FocusSession.start(context, at)
        self._session = session
        logger.debug(
            "Session opened: app=%s title=%s url=%s",
            session.app_name,
            session.window_title,
            session.url,
        )
        try:
            self._sink.insert(session)
        except Exception:
            logger.exception("Failed to insert session %s", session.id)

    def _finalize(self, at: float) -> None:
        session = self._session
        self._session = None
        if session is None or not session.is_active:
            return
        session.finish(at)
        logger.debug("Session closed: app=%s duration=%.1fs", session.app_name, session.duration)
        try:
            self._sink.update(session)
        except Exception:
            logger.exception("Failed to finalize session %s", session.id)

    def _seconds_idle(self) -> Optional[float]:
        if self._idle_source is None:
            return None
        try:
            return self._idle_source.seconds_since_input()
        except SamplingError:
            logger.exception("Failed to query idle state; assuming not idle.")
            return None

    def _interval(self, now: float) -> float:
        settings = self.settings
        elapsed = now - self._last_change_time
        if elapsed < settings.stable_after.total_seconds():
            base = settings.active_interval
        elif elapsed < settings.deep_focus_after.total_seconds():
            base = settings.stable_interval
        else:
            base = settings.deep_focus_interval
        seconds = base.total_seconds()
        if self._low_power():
            seconds *= settings.low_power_multiplier
        return seconds

    def _next_delay(self, now: float) -> float:
        delay = self._interval(now)
        if self._state is RecorderState.ACTIVE and self._pending is not None:
            delay = min(delay, max(self._pending.commit_at - now, 0.0))
        return delay

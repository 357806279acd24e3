"""Background threads that drive the recorder and the sync transport."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """Run ``step`` repeatedly on a daemon thread.

    ``step`` returns the number of seconds to wait before the next call, or
    ``None`` to end the loop. A step that raises is retried after
    ``error_delay`` seconds.
    """

    def __init__(
        self,
        name: str,
        step: Callable[[], Optional[float]],
        *,
        initial_delay: float = 0.0,
        error_delay: float = 1.0,
    ) -> None:
        self.name = name
        self._step = step
        self._initial_delay = initial_delay
        self._error_delay = error_delay
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(stop_event,), name=self.name, daemon=True
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("%s thread started.", self.name)

    def stop(self, timeout: float = 10.0) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("%s thread stopped.", self.name)

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _run(self, stop_event: threading.Event) -> None:
        delay: Optional[float] = self._initial_delay
        while delay is not None and not stop_event.wait(delay):
            try:
                delay = self._step()
            except Exception:
                logger.exception(
                    "%s step failed; retrying in %.1fs.", self.name, self._error_delay
                )
                delay = self._error_delay
        logger.debug("%s loop exited.", self.name)

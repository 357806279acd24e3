"""In-memory ingestion queue with a background drain worker.

Accepted sessions are buffered here and written to the durable store in
batches small enough to stay under the store's bound-parameter ceiling.
Failed batches are counted and dropped; the client's watermark retry re-sends
them and the ``INSERT OR IGNORE`` write keeps re-delivery idempotent.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from .durable import COLUMNS, MAX_BOUND_PARAMETERS, DurableStore, write_batch
from .models import QueuedRecord

logger = logging.getLogger(__name__)

WriteFn = Callable[[Sequence[QueuedRecord]], object]


def max_batch_size(max_parameters: int = MAX_BOUND_PARAMETERS, columns: int = len(COLUMNS)) -> int:
    """Largest row count whose parameter total stays strictly under the ceiling."""
    size = (max_parameters - 1) // columns
    if size < 1:
        raise ValueError(
            f"A {columns}-column row cannot fit under {max_parameters} bound parameters"
        )
    return size


@dataclass(slots=True)
class QueueStats:
    pending: int
    drained: int
    failed: int
    running: bool
    draining: bool


@dataclass(slots=True)
class DrainResult:
    """What one drain pass did; ``skipped`` when another pass was in flight."""

    batches: int = 0
    drained: int = 0
    failed: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)


class IngestionQueue:
    """FIFO of accepted records drained by a single-flight writer."""

    def __init__(
        self,
        write_fn: WriteFn,
        *,
        batch_size: Optional[int] = None,
        drain_interval: float = 2.0,
        auto_start: bool = True,
        on_drain: Optional[Callable[[DrainResult], None]] = None,
    ) -> None:
        self._write_fn = write_fn
        self.batch_size = batch_size or max_batch_size()
        self.drain_interval = drain_interval
        self._on_drain = on_drain
        self._items: list[QueuedRecord] = []
        self._items_lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._drained = 0
        self._failed = 0
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        if auto_start:
            self.start()

    @classmethod
    def for_store(
        cls,
        store: DurableStore,
        *,
        max_bound_parameters: int = MAX_BOUND_PARAMETERS,
        **kwargs,
    ) -> "IngestionQueue":
        return cls(
            lambda batch: write_batch(store, batch),
            batch_size=max_batch_size(max_bound_parameters, len(COLUMNS)),
            **kwargs,
        )

    def enqueue(self, records: Iterable[QueuedRecord]) -> int:
        """Append records in order; returns how many were added."""
        batch = list(records)
        if not batch:
            return 0
        with self._items_lock:
            self._items.extend(batch)
        return len(batch)

    def drain(self) -> DrainResult:
        """Write everything pending, one batch at a time.

        A no-op when empty, and returns immediately with ``skipped=True`` when
        another drain is already running.
        """
        if not self._drain_lock.acquire(blocking=False):
            return DrainResult(skipped=True)
        try:
            with self._items_lock:
                items, self._items = self._items, []
            result = DrainResult()
            if not items:
                return result
            for start in range(0, len(items), self.batch_size):
                batch = items[start : start + self.batch_size]
                result.batches += 1
                try:
                    self._write_fn(batch)
                except Exception as exc:
                    self._failed += len(batch)
                    result.failed += len(batch)
                    result.errors.append(str(exc))
                    logger.error(
                        "Batch write failed (%d items): %s", len(batch), exc
                    )
                else:
                    self._drained += len(batch)
                    result.drained += len(batch)
            logger.debug(
                "Drained %d records in %d batches (%d failed)",
                result.drained,
                result.batches,
                result.failed,
            )
        finally:
            self._drain_lock.release()
        if self._on_drain is not None:
            try:
                self._on_drain(result)
            except Exception:
                logger.exception("Drain listener failed")
        return result

    def stats(self) -> QueueStats:
        with self._items_lock:
            pending = len(self._items)
        return QueueStats(
            pending=pending,
            drained=self._drained,
            failed=self._failed,
            running=self.is_running(),
            draining=self._drain_lock.locked(),
        )

    def start(self) -> None:
        """Start the periodic drain trigger."""
        if self._thread and self._thread.is_alive():
            return
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run, args=(stop_event,), name="ingest-drain", daemon=True
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()
        logger.info("Drain worker started (interval %.1fs, batch size %d).", self.drain_interval, self.batch_size)

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Stop future periodic drains; an in-flight drain finishes first."""
        thread, stop_event = self._thread, self._stop_event
        self._thread = None
        self._stop_event = None
        if stop_event is None or thread is None:
            return
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("Drain worker stopped.")

    def is_running(self) -> bool:
        thread = self._thread
        return bool(thread and thread.is_alive())

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.drain_interval):
            try:
                self.drain()
            except Exception:
                logger.exception("Unexpected error during periodic drain")

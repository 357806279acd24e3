"""Uploads closed sessions from the local store to the ingestion server."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import requests

from .config import SyncSettings
from .errors import (
    SyncBadRequestError,
    SyncBatchTooLargeError,
    SyncError,
    SyncServerError,
    SyncUnauthorizedError,
)
from .models import FocusSession

logger = logging.getLogger(__name__)


class UnsyncedSource(Protocol):
    watermark: float

    def query_unsynced(self, since: float, limit: int) -> list[FocusSession]:
        ...


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    DISABLED = "disabled"


@dataclass(slots=True)
class SyncResult:
    """Outcome of one upload attempt."""

    sent: int = 0
    accepted: int = 0
    sync_id: Optional[str] = None
    watermark: float = 0.0
    skipped: bool = False


class SyncTransport:
    """Watermark-based batch uploader with at most one batch in flight."""

    def __init__(
        self,
        store: UnsyncedSource,
        settings: SyncSettings,
        *,
        session: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.settings = settings
        self._session = session if session is not None else requests.Session()
        self._clock = clock
        self._in_flight = threading.Lock()
        self.status = SyncStatus.IDLE if settings.is_configured else SyncStatus.DISABLED
        self.last_error: Optional[str] = None
        self.last_sync_time: Optional[float] = None
        self.last_sync_count = 0

    def sync_once(self) -> SyncResult:
        """Send one batch; advance the watermark only when the server accepts it.

        Raises :class:`SyncError` subclasses on rejection. Returns a skipped
        result when another cycle is already running.
        """
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Sync skipped; already in progress.")
            return SyncResult(skipped=True, watermark=self._store.watermark)
        try:
            return self._sync_batch()
        finally:
            self._in_flight.release()

    def sync_now(self) -> int:
        """Run a full cycle, sending batches until a partial one; returns accepted count."""
        if not self.settings.is_configured:
            logger.debug("Sync skipped; not configured.")
            return 0
        previous_status = self.status
        self.status = SyncStatus.SYNCING
        started = self._clock()
        total = 0
        batches = 0
        attempts = 0
        try:
            while True:
                result = self.sync_once()
                if result.skipped:
                    if not attempts:
                        # Another cycle owns the status and counters.
                        self.status = previous_status
                        return 0
                    break
                attempts += 1
                if result.sent:
                    batches += 1
                total += result.accepted
                if result.sent < self.settings.batch_limit:
                    break
        except SyncError as exc:
            self._record_error(exc)
            raise
        self.status = SyncStatus.IDLE
        self.last_error = None
        self.last_sync_time = self._clock()
        self.last_sync_count = total
        if total:
            logger.info(
                "Sync cycle complete: %d sessions in %d batch(es), took %.2fs",
                total,
                batches,
                self.last_sync_time - started,
            )
        else:
            logger.debug("Sync cycle complete: nothing to sync")
        return total

    def run_cycle(self) -> Optional[float]:
        """Loop step for :class:`BackgroundLoop`; ``None`` stops the loop."""
        if not self.settings.is_configured:
            self.status = SyncStatus.DISABLED
            return self.settings.interval.total_seconds()
        try:
            self.sync_now()
        except SyncUnauthorizedError:
            logger.warning("API key rejected; sync loop stopped until the key is fixed.")
            return None
        except SyncError:
            pass
        return self.settings.interval.total_seconds()

    def close(self) -> None:
        self._session.close()

    def _sync_batch(self) -> SyncResult:
        watermark = self._store.watermark
        sessions = self._store.query_unsynced(watermark, self.settings.batch_limit)
        if not sessions:
            logger.debug("No sessions to sync (watermark %.3f up-to-date)", watermark)
            return SyncResult(watermark=watermark)

        logger.info(
            "Uploading %d sessions [startTime %.3f..%.3f]",
            len(sessions),
            sessions[0].start_time,
            sessions[-1].start_time,
        )
        payload = self._upload([session.to_wire() for session in sessions])
        accepted = payload.get("accepted", len(sessions))
        if isinstance(accepted, bool) or not isinstance(accepted, int) or accepted < 0:
            raise SyncServerError("invalid response body")
        new_watermark = max(watermark, max(session.start_time for session in sessions))
        self._store.watermark = new_watermark
        logger.debug("Watermark advanced: %.3f -> %.3f", watermark, new_watermark)
        return SyncResult(
            sent=len(sessions),
            accepted=accepted,
            sync_id=payload.get("sync_id"),
            watermark=new_watermark,
        )

    def _upload(self, sessions: list[dict[str, Any]]) -> dict[str, Any]:
        try:
            response = self._session.post(
                self.settings.endpoint,
                json={"sessions": sessions},
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
                timeout=self.settings.timeout.total_seconds(),
            )
        except requests.RequestException as exc:
            raise SyncServerError(f"request failed: {exc}") from exc

        status = response.status_code
        if status in (200, 202):
            try:
                body = response.json()
            except ValueError as exc:
                raise SyncServerError("invalid response body") from exc
            if not isinstance(body, dict):
                raise SyncServerError("invalid response body")
            return body
        logger.warning("Server returned HTTP %d", status)
        if status == 401:
            raise SyncUnauthorizedError("unauthorized")
        if status == 400:
            raise SyncBadRequestError(_error_message(response) or "Bad request")
        if status == 413:
            raise SyncBatchTooLargeError("batch too large")
        raise SyncServerError(str(status))

    def _record_error(self, exc: SyncError) -> None:
        self.last_error = exc.user_message
        self.status = SyncStatus.ERROR
        logger.error("Sync error: %s", exc.user_message)


def _error_message(response: Any) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error")
    return None

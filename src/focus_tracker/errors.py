"""Exception hierarchy shared by the client and the ingestion server."""

from __future__ import annotations


class FocusTrackerError(Exception):
    """Base class for all focus tracker errors."""


class SamplingError(FocusTrackerError):
    """The foreground context could not be read; carries no new information."""


class ValidationError(FocusTrackerError):
    """A sync batch was malformed, empty, or missing required fields."""

    status_code = 400


class BatchTooLargeError(ValidationError):
    status_code = 413


class AuthError(FocusTrackerError):
    """The caller's credential was missing or not recognised."""

    status_code = 401


class TransientWriteError(FocusTrackerError):
    """The durable store rejected or failed a write."""


class ParameterLimitError(TransientWriteError):
    """A statement carried more bound parameters than the store allows."""


class SyncError(FocusTrackerError):
    """Base class for client-side upload failures."""

    user_message = "Sync failed. Will retry."


class SyncUnauthorizedError(SyncError):
    user_message = "Invalid API key. Check --api-key (or FOCUS_TRACKER_API_KEY)."


class SyncBadRequestError(SyncError):
    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Bad request: {self}"


class SyncBatchTooLargeError(SyncError):
    user_message = "Batch too large for the server; lower --batch-limit."


class SyncServerError(SyncError):
    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Server error ({self}). Will retry."

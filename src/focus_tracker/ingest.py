"""Ingestion boundary: batch validation and caller identity resolution."""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .config import MAX_SYNC_BATCH
from .durable import DurableStore
from .errors import AuthError, BatchTooLargeError, TransientWriteError, ValidationError
from .models import QueuedRecord

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "gk_"

# Keeps tab counts inside a 32-bit INTEGER column on every durable store.
MAX_TAB_COUNT = 2**31 - 1

REQUIRED_FIELDS = (
    "id",
    "app_name",
    "window_title",
    "start_time",
    "duration",
)

_BEARER_PATTERN = re.compile(r"^bearer\s+(.+)$", re.IGNORECASE)


class SyncSessionPayload(BaseModel):
    id: str = Field(min_length=1)
    app_name: str
    window_title: str
    start_time: float
    duration: float = Field(ge=0)
    end_time: Optional[float] = None
    url: Optional[str] = None
    bundle_id: Optional[str] = None
    tab_title: Optional[str] = None
    tab_count: Optional[int] = Field(default=None, ge=0, le=MAX_TAB_COUNT)
    document_path: Optional[str] = None
    is_full_screen: bool = False
    is_minimized: bool = False

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


@dataclass(frozen=True, slots=True)
class Caller:
    user_id: str
    device_id: str


def validate_batch(body: Any, max_batch: int = MAX_SYNC_BATCH) -> list[SyncSessionPayload]:
    """Check a decoded request body; raises before anything is enqueued."""
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    sessions = body.get("sessions")
    if not isinstance(sessions, list) or not sessions:
        raise ValidationError("sessions array is required and must not be empty")
    if len(sessions) > max_batch:
        raise BatchTooLargeError(
            f"Batch too large: {len(sessions)} sessions (max {max_batch})"
        )

    validated: list[SyncSessionPayload] = []
    for index, raw in enumerate(sessions):
        if not isinstance(raw, dict):
            raise ValidationError(f"Session at index {index} must be an object")
        for field_name in REQUIRED_FIELDS:
            if raw.get(field_name) is None:
                raise ValidationError(
                    f"Session at index {index} is missing required field: {field_name}"
                )
        try:
            validated.append(SyncSessionPayload.model_validate(raw))
        except pydantic.ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            raise ValidationError(f"Session at index {index} is invalid: {problems}") from exc
    return validated


def to_queued_records(
    sessions: list[SyncSessionPayload], caller: Caller
) -> list[QueuedRecord]:
    return [
        QueuedRecord(
            id=session.id,
            user_id=caller.user_id,
            device_id=caller.device_id,
            app_name=session.app_name,
            window_title=session.window_title,
            url=session.url,
            start_time=session.start_time,
            duration=session.duration,
            bundle_id=session.bundle_id,
            tab_title=session.tab_title,
            tab_count=session.tab_count,
            document_path=session.document_path,
            is_full_screen=session.is_full_screen,
            is_minimized=session.is_minimized,
        )
        for session in sessions
    ]


def generate_api_key() -> str:
    """``gk_`` followed by 32 random bytes as hex."""
    return API_KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    match = _BEARER_PATTERN.match(header.strip())
    if not match or not match.group(1).strip():
        return None
    return match.group(1).strip()


class ApiKeyRegistry:
    """Maps API keys to the account and device that own them.

    Only SHA-256 hashes are stored. Resolved keys are cached in memory so the
    ingestion path touches the store once per key.
    """

    def __init__(self, store: DurableStore) -> None:
        self._store = store
        self._cache: dict[str, Caller] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str, device_id: str, name: str) -> str:
        key = generate_api_key()
        self._store.execute(
            """
            INSERT INTO api_keys (id, user_id, name, key_hash, device_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                str(uuid.uuid4()),
                user_id,
                name,
                hash_api_key(key),
                device_id,
                _utcnow(),
            ],
        )
        logger.info("Issued API key for user=%s device=%s", user_id, device_id)
        return key

    def resolve(self, authorization: Optional[str]) -> Caller:
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthError("Missing or invalid Authorization header")
        key_hash = hash_api_key(token)
        with self._lock:
            cached = self._cache.get(key_hash)
        if cached is not None:
            return cached

        rows = self._store.query(
            "SELECT id, user_id, device_id FROM api_keys WHERE key_hash = ?",
            [key_hash],
        )
        if not rows:
            raise AuthError("Invalid API key")

        row = rows[0]
        caller = Caller(user_id=row["user_id"], device_id=row["device_id"])
        with self._lock:
            self._cache[key_hash] = caller
        try:
            self._store.execute(
                "UPDATE api_keys SET last_used = ? WHERE id = ?", [_utcnow(), row["id"]]
            )
        except TransientWriteError:
            logger.debug("Could not record last_used for key %s", row["id"])
        return caller


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()

"""Domain models for captured focus sessions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class FocusContext:
    """A single reading of the foreground application and window."""

    app_name: str
    window_title: str = ""
    bundle_id: Optional[str] = None
    url: Optional[str] = None
    tab_title: Optional[str] = None
    tab_count: Optional[int] = None
    document_path: Optional[str] = None
    is_full_screen: bool = False
    is_minimized: bool = False

    def same_app(self, other: "FocusContext") -> bool:
        return self.app_name == other.app_name and self.bundle_id == other.bundle_id


@dataclass(slots=True)
class FocusSession:
    """A contiguous interval of attention on one application/window/URL.

    While open, ``end_time == start_time`` and ``duration == 0``. Once
    :meth:`finish` has run the session is closed and must not change again.
    Times are Unix timestamps in seconds.
    """

    id: str
    app_name: str
    window_title: str
    start_time: float
    end_time: float
    duration: float = 0.0
    bundle_id: Optional[str] = None
    url: Optional[str] = None
    tab_title: Optional[str] = None
    tab_count: Optional[int] = None
    document_path: Optional[str] = None
    is_full_screen: bool = False
    is_minimized: bool = False

    @classmethod
    def start(
        cls, context: FocusContext, now: float, session_id: Optional[str] = None
    ) -> "FocusSession":
        return cls(
            id=session_id or str(uuid.uuid4()).upper(),
            app_name=context.app_name,
            window_title=context.window_title,
            start_time=now,
            end_time=now,
            duration=0.0,
            bundle_id=context.bundle_id,
            url=context.url,
            tab_title=context.tab_title,
            tab_count=context.tab_count,
            document_path=context.document_path,
            is_full_screen=context.is_full_screen,
            is_minimized=context.is_minimized,
        )

    @property
    def is_active(self) -> bool:
        return self.duration == 0 and self.end_time == self.start_time

    def finish(self, at: float) -> None:
        """Close the session at ``at`` (never earlier than its start)."""
        if not self.is_active:
            raise ValueError(f"Session {self.id} is already closed")
        self.end_time = max(at, self.start_time)
        self.duration = self.end_time - self.start_time

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "app_name": self.app_name,
            "window_title": self.window_title,
            "url": self.url,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "bundle_id": self.bundle_id,
            "tab_title": self.tab_title,
            "tab_count": self.tab_count,
            "document_path": self.document_path,
            "is_full_screen": self.is_full_screen,
            "is_minimized": self.is_minimized,
        }


@dataclass(slots=True)
class QueuedRecord:
    """A received session enriched with the caller's account and device."""

    id: str
    user_id: str
    device_id: str
    app_name: str
    window_title: str
    url: Optional[str]
    start_time: float
    duration: float
    bundle_id: Optional[str] = None
    tab_title: Optional[str] = None
    tab_count: Optional[int] = None
    document_path: Optional[str] = None
    is_full_screen: bool = False
    is_minimized: bool = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def as_params(self) -> tuple[Any, ...]:
        return (
            self.id,
            self.user_id,
            self.device_id,
            self.app_name,
            self.window_title,
            self.url,
            self.start_time,
            self.duration,
            self.bundle_id,
            self.tab_title,
            self.tab_count,
            self.document_path,
            1 if self.is_full_screen else 0,
            1 if self.is_minimized else 0,
        )

"""Configuration models and helpers for the focus tracker."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

MAX_SYNC_BATCH = 1000


@dataclass(slots=True)
class RecorderSettings:
    """Runtime configuration for the session recorder."""

    idle_threshold: timedelta = timedelta(seconds=60)
    title_debounce: timedelta = timedelta(seconds=2)
    stable_after: timedelta = timedelta(seconds=30)
    deep_focus_after: timedelta = timedelta(minutes=5)
    active_interval: timedelta = timedelta(seconds=3)
    stable_interval: timedelta = timedelta(seconds=6)
    deep_focus_interval: timedelta = timedelta(seconds=12)
    low_power_multiplier: float = 1.5
    sleep_gap: timedelta = timedelta(minutes=2)

    @classmethod
    def from_intervals(
        cls,
        idle_seconds: float,
        debounce_seconds: float | None = None,
        base_interval_seconds: float | None = None,
    ) -> "RecorderSettings":
        """Build settings, scaling the three polling tiers off one base interval."""
        defaults = cls()
        base = (
            base_interval_seconds
            if base_interval_seconds is not None
            else defaults.active_interval.total_seconds()
        )
        debounce = (
            debounce_seconds
            if debounce_seconds is not None
            else defaults.title_debounce.total_seconds()
        )
        return cls(
            idle_threshold=timedelta(seconds=idle_seconds),
            title_debounce=timedelta(seconds=debounce),
            active_interval=timedelta(seconds=base),
            stable_interval=timedelta(seconds=base * 2),
            deep_focus_interval=timedelta(seconds=base * 4),
        )


@dataclass(slots=True)
class SyncSettings:
    """Where and how often the client uploads closed sessions."""

    server_url: str = ""
    api_key: str = ""
    interval: timedelta = timedelta(minutes=5)
    batch_limit: int = MAX_SYNC_BATCH
    timeout: timedelta = timedelta(seconds=30)
    enabled: bool = True

    def __post_init__(self) -> None:
        self.batch_limit = max(1, min(int(self.batch_limit), MAX_SYNC_BATCH))
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.server_url) and bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.server_url}/api/sync"


@dataclass(slots=True)
class IngestSettings:
    """Ingestion server limits and drain cadence."""

    max_batch: int = MAX_SYNC_BATCH
    max_bound_parameters: int = 100
    drain_interval: timedelta = timedelta(seconds=2)
    db_path: Optional[Path] = None


@dataclass(slots=True)
class D1Settings:
    """Credentials for the hosted Cloudflare D1 database."""

    account_id: str = ""
    api_token: str = ""
    database_id: str = ""

    @classmethod
    def from_env(cls) -> "D1Settings":
        return cls(
            account_id=os.environ.get("CF_ACCOUNT_ID", ""),
            api_token=os.environ.get("CF_API_TOKEN", ""),
            database_id=os.environ.get("CF_D1_DATABASE_ID", ""),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.api_token and self.database_id)

    @property
    def query_url(self) -> str:
        return (
            "https://api.cloudflare.com/client/v4/accounts/"
            f"{self.account_id}/d1/database/{self.database_id}/query"
        )

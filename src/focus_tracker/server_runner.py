"""Helpers to launch the ingestion server."""

from __future__ import annotations

import logging
from typing import Optional

import uvicorn

from .config import IngestSettings
from .webapp import create_app


def run_ingest_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8787,
    settings: Optional[IngestSettings] = None,
    log_level: str = "info",
) -> None:
    """Start the FastAPI ingestion server."""
    app = create_app(settings=settings or IngestSettings())
    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)

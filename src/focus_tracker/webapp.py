"""FastAPI application that accepts session batches from tracker clients."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .config import IngestSettings
from .durable import DurableStore, open_durable_store
from .errors import AuthError, TransientWriteError, ValidationError
from .ingest import ApiKeyRegistry, to_queued_records, validate_batch
from .ingest_queue import IngestionQueue
from .paths import get_server_db_path

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: Optional[IngestSettings] = None,
    store: Optional[DurableStore] = None,
    queue: Optional[IngestionQueue] = None,
) -> FastAPI:
    """Instantiate the ingestion API.

    A queue passed in is owned by the caller; otherwise the app builds one on
    ``store`` and starts/stops its drain worker with the server.
    """
    resolved_settings = settings or IngestSettings()
    resolved_store = store or open_durable_store(
        resolved_settings.db_path or get_server_db_path(),
        resolved_settings.max_bound_parameters,
    )
    owns_queue = queue is None
    resolved_queue = queue or IngestionQueue.for_store(
        resolved_store,
        max_bound_parameters=resolved_settings.max_bound_parameters,
        drain_interval=resolved_settings.drain_interval.total_seconds(),
        auto_start=False,
    )
    registry = ApiKeyRegistry(resolved_store)

    app = FastAPI(title="Focus Tracker Ingest", version="0.1.0")
    app.state.store = resolved_store
    app.state.queue = resolved_queue
    app.state.registry = registry

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        if owns_queue:
            resolved_queue.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if owns_queue:
            resolved_queue.shutdown()
            await run_in_threadpool(resolved_queue.drain)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(TransientWriteError)
    async def _store_error(request: Request, exc: TransientWriteError) -> JSONResponse:
        logger.error("Store unavailable while handling %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": "Storage temporarily unavailable"})

    @app.post("/api/sync")
    async def sync(request: Request) -> JSONResponse:
        caller = await run_in_threadpool(
            registry.resolve, request.headers.get("authorization")
        )
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError("Invalid JSON body") from exc
        sessions = validate_batch(body, resolved_settings.max_batch)
        accepted = resolved_queue.enqueue(to_queued_records(sessions, caller))
        sync_id = str(uuid.uuid4())
        logger.info(
            "Accepted %d sessions from device %s (sync %s)",
            accepted,
            caller.device_id,
            sync_id,
        )
        return JSONResponse(
            status_code=202, content={"accepted": accepted, "sync_id": sync_id}
        )

    @app.get("/api/sync/status")
    async def sync_status(request: Request) -> Dict[str, Any]:
        caller = await run_in_threadpool(
            registry.resolve, request.headers.get("authorization")
        )
        return {
            "device_id": caller.device_id,
            "queue": asdict(resolved_queue.stats()),
        }

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "queue_running": resolved_queue.is_running()}

    return app

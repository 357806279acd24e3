"""Command-line interface for the focus tracker."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer

from .config import MAX_SYNC_BATCH, IngestSettings, RecorderSettings, SyncSettings
from .paths import get_db_path, get_log_path, get_server_db_path

app = typer.Typer(help="Focus session recorder, sync client and ingestion server.")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
    )


def _sync_settings(
    server_url: Optional[str], api_key: Optional[str], interval_minutes: float, batch_limit: int
) -> SyncSettings:
    return SyncSettings(
        server_url=server_url or "",
        api_key=api_key or "",
        interval=timedelta(minutes=interval_minutes),
        batch_limit=batch_limit,
    )


@app.command()
def collect(
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the local sessions SQLite database.",
    ),
    idle_seconds: float = typer.Option(
        60.0,
        "--idle-threshold",
        min=5.0,
        help="Seconds without input before the open session is closed as idle.",
    ),
    server_url: Optional[str] = typer.Option(
        None, "--server-url", envvar="FOCUS_TRACKER_SERVER_URL", help="Ingestion server base URL."
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", envvar="FOCUS_TRACKER_API_KEY", help="Device API key (gk_...)."
    ),
    sync_minutes: float = typer.Option(
        5.0, "--sync-interval", min=0.1, help="Minutes between sync cycles."
    ),
) -> None:
    """Record focus sessions (and sync them, when configured) until interrupted."""
    from .db import LocalStore
    from .errors import FocusTrackerError
    from .recorder import SessionRecorder
    from .runner import BackgroundLoop
    from .sampler import battery_saver_active, create_default_sampler
    from .signals import WindowsSignalSource
    from .sync import SyncTransport

    try:
        sampler, idle_source = create_default_sampler()
    except FocusTrackerError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    store = LocalStore(db_path or get_db_path())
    recorder = SessionRecorder(
        sampler,
        store,
        RecorderSettings.from_intervals(idle_seconds=idle_seconds),
        idle_source=idle_source,
        low_power=battery_saver_active,
    )
    transport = SyncTransport(
        store, _sync_settings(server_url, api_key, sync_minutes, MAX_SYNC_BATCH)
    )

    signals = WindowsSignalSource(recorder.handle)

    recorder.start()
    signals.start()
    recorder_loop = BackgroundLoop("recorder", recorder.tick, initial_delay=recorder.current_interval())
    sync_loop = BackgroundLoop(
        "sync",
        transport.run_cycle,
        error_delay=transport.settings.interval.total_seconds(),
    )
    recorder_loop.start()
    if transport.settings.is_configured:
        sync_loop.start()
    else:
        logging.getLogger(__name__).info("Sync disabled; pass --server-url and --api-key to enable.")

    stop_event = threading.Event()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Recorder interrupted; closing the open session.")
    finally:
        signals.stop()
        recorder_loop.stop()
        recorder.stop()
        sync_loop.stop()
        transport.close()
        store.close()


@app.command()
def sync(
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the local sessions SQLite database."
    ),
    server_url: str = typer.Option(
        ..., "--server-url", envvar="FOCUS_TRACKER_SERVER_URL", help="Ingestion server base URL."
    ),
    api_key: str = typer.Option(
        ..., "--api-key", envvar="FOCUS_TRACKER_API_KEY", help="Device API key (gk_...)."
    ),
    batch_limit: int = typer.Option(
        MAX_SYNC_BATCH, "--batch-limit", min=1, max=MAX_SYNC_BATCH, help="Sessions per request."
    ),
) -> None:
    """Upload every closed session newer than the watermark, then exit."""
    from .db import LocalStore
    from .errors import SyncError
    from .sync import SyncTransport

    store = LocalStore(db_path or get_db_path())
    transport = SyncTransport(store, _sync_settings(server_url, api_key, 5.0, batch_limit))
    try:
        accepted = transport.sync_now()
    except SyncError as exc:
        typer.echo(exc.user_message, err=True)
        raise typer.Exit(code=1) from exc
    finally:
        transport.close()
        store.close()
    typer.echo(f"Synced {accepted} sessions.")


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the local sessions SQLite database.",
    ),
) -> None:
    """Print a high-level summary for a specific day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the ingestion server."),
    port: int = typer.Option(8787, "--port", min=1, max=65535, help="TCP port for the server."),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="SQLite durable store (ignored when CF_* D1 credentials are set).",
    ),
    drain_seconds: float = typer.Option(
        2.0, "--drain-interval", min=0.1, help="Seconds between queue drains."
    ),
) -> None:
    """Run the ingestion server."""
    from .server_runner import run_ingest_server

    settings = IngestSettings(
        drain_interval=timedelta(seconds=drain_seconds),
        db_path=db_path or get_server_db_path(),
    )
    run_ingest_server(host=host, port=port, settings=settings)


@app.command("issue-key")
def issue_key(
    user_id: str = typer.Option(..., "--user", help="Account the key belongs to."),
    device_id: str = typer.Option(..., "--device", help="Device the key identifies."),
    name: str = typer.Option("My computer", "--name", help="Label shown for the device."),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="SQLite durable store holding api_keys."
    ),
) -> None:
    """Create an API key for a device and print it once."""
    from .durable import open_durable_store
    from .ingest import ApiKeyRegistry

    store = open_durable_store(db_path or get_server_db_path())
    try:
        key = ApiKeyRegistry(store).issue(user_id=user_id, device_id=device_id, name=name)
    finally:
        store.close()
    typer.echo(key)

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import json
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
import typer

from booksync.adapters.db.store import SqlStore, StorageError
from booksync.core.config import SyncConfig, load_sync_config_from_env
from booksync.entities import get_entity
from booksync.infra.clients.zoho import ZohoClient, ZohoClientError
from booksync.orchestrators.sync_orchestrator import SyncOrchestrator
from booksync.services.historical_sync import (
    CancellationRegistry,
    HistoricalSyncControl,
    HistoricalSyncEngine,
    SyncAlreadyRunningError,
    UnknownModuleError,
    format_time_ago,
    latest_sync_timestamps,
)

# Load environment variables from .env
load_dotenv()

app = typer.Typer(
    help="booksync: keep a local cache of Zoho Books, CRM and Desk records.",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option("INFO", "--log-level", help="Log level for stderr"),
) -> None:
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


def _echo_json(data: dict[str, Any]) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _load_config() -> SyncConfig:
    try:
        return load_sync_config_from_env()
    except ValueError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(2) from None


def _open_store(config: SyncConfig) -> SqlStore:
    store = SqlStore(config.database_url)
    try:
        store.create_all()
    except StorageError as e:
        typer.echo(f"Cannot open database {config.database_url}: {e}", err=True)
        raise typer.Exit(1) from None
    return store


def _zoho_client(config: SyncConfig) -> ZohoClient:
    try:
        return ZohoClient.from_env(rate_limit_seconds=config.rate_limit_seconds)
    except ZohoClientError as e:
        typer.echo(f"Error initializing Zoho client: {e}", err=True)
        raise typer.Exit(1) from None


@app.command("sync-historical")
def sync_historical(
    days: int | None = typer.Option(
        None, "--days", min=1, help="Trailing window in days (default from env)"
    ),
    module: list[str] | None = typer.Option(  # noqa: B008
        None, "--module", help="Module to sync; repeat for several (default: all)"
    ),
    principal: str | None = typer.Option(
        None, help="Principal to sync as (default: system)"
    ),
) -> None:
    """Backfill recent Books transactions and their line items.

    Press Ctrl+C to stop after the current record; the partial result is still
    printed.
    """
    config = _load_config()
    store = _open_store(config)
    client = _zoho_client(config)

    registry = CancellationRegistry()
    engine = HistoricalSyncEngine(
        client,
        store,
        registry,
        page_size=config.page_size,
        operator_email_domain=config.operator_email_domain,
        fetch_comments=config.fetch_comments,
    )
    control = HistoricalSyncControl(
        engine, registry, default_window_days=config.window_days
    )

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(
            control.start_historical_sync, days, module or None, principal
        )
        try:
            try:
                result = future.result()
            except KeyboardInterrupt:
                typer.echo("\nStopping...", err=True)
                stop = control.request_stop_sync(principal)
                typer.echo(stop.message, err=True)
                result = future.result()
        except (UnknownModuleError, ValueError) as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(2) from None
        except SyncAlreadyRunningError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1) from None

    _echo_json(result.to_dict())


@app.command("sync")
def sync(
    entity: str = typer.Argument(..., help="Entity name, e.g. invoices"),
    page: int | None = typer.Option(None, min=1, help="Page to fetch"),
    per_page: int | None = typer.Option(None, min=1, help="Records per page"),
) -> None:
    """List one page of an entity from Zoho and upsert it into the cache."""
    try:
        descriptor = get_entity(entity)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(2) from None
    if not descriptor.api_endpoint:
        typer.echo(f"{entity} is synced with its parent records only", err=True)
        raise typer.Exit(2)

    config = _load_config()
    store = _open_store(config)
    client = _zoho_client(config)
    orchestrator = SyncOrchestrator(
        client, store, batch_size=config.upsert_batch_size
    )

    result = orchestrator.sync(
        descriptor, {"page": page, "page_size": per_page or config.page_size}
    )
    _echo_json(result.to_dict())
    if not result.success:
        raise typer.Exit(1)


@app.command("latest")
def latest() -> None:
    """Show when each historical sync module last wrote a record."""
    config = _load_config()
    store = _open_store(config)
    for name, timestamp in latest_sync_timestamps(store).items():
        when = timestamp.isoformat() if timestamp is not None else "-"
        typer.echo(f"{name:<16} {when:<28} {format_time_ago(timestamp)}")


@app.command("init-db")
def init_db(
    url: str | None = typer.Option(None, help="Database URL (default from env)"),
) -> None:
    """Create every cache table that does not exist yet."""
    config = _load_config()
    database_url = url or config.database_url
    _open_store(SyncConfig(database_url=database_url))
    typer.echo(f"Initialized database at {database_url}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

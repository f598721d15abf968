import asyncio
import os
import signal
from dataclasses import replace
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from observation_sync.config import ENV_PREFIX, SyncSettings
from observation_sync.connectivity import ConnectivityGate
from observation_sync.context import SyncContext
from observation_sync.engine import DrainResult
from observation_sync.errors import SyncError
from observation_sync.logging_config import configure_logging
from observation_sync.log.pending_log import PendingOperationLog
from observation_sync.cache import LocalCache
from observation_sync.reconcile import load_backup
from observation_sync.remote.http_remote import HTTPRemoteStore
from observation_sync.scheduler import DrainScheduler, SyncStatus
from observation_sync.storage.sqlite_store import SQLiteDurableStore

app = typer.Typer(help="Offline-first observation sync CLI")
console = Console()

DB_ARGUMENT = typer.Argument(..., help="Path to the local SQLite store")
REMOTE_OPTION = typer.Option(..., "--remote", "-r", envvar=f"{ENV_PREFIX}REMOTE_URL", help="Remote server URL")
TOKEN_OPTION = typer.Option(None, "--token", envvar=f"{ENV_PREFIX}TOKEN", help="Bearer token")
TIMEOUT_OPTION = typer.Option(SyncSettings.timeout, envvar=f"{ENV_PREFIX}TIMEOUT", help="Remote call timeout (seconds)")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also log to this file"),
):
    configure_logging(level=log_level, json_format=json_logs, log_file=log_file)


async def _open_context(settings: SyncSettings) -> SyncContext:
    remote = HTTPRemoteStore(settings.remote_url, auth_token=settings.token, timeout=settings.timeout)
    # Probe before wiring the gate so opening does not start a reconnect drain
    gate = ConnectivityGate(online=await remote.ping())
    return await SyncContext.open(
        remote,
        SQLiteDurableStore(settings.db_path),
        gate=gate,
        timeout=settings.timeout,
        stall_threshold=settings.stall_threshold,
    )


def _print_result(result: DrainResult) -> None:
    if result.skipped:
        console.print(f"[yellow]Drain skipped: {result.skipped}[/yellow] ({result.remaining} pending)")
    elif result.fully_drained:
        console.print(
            f"[green]Drained {result.succeeded}/{result.attempted} operations"
            f"{', cache refreshed' if result.refreshed else ''}[/green]"
        )
    else:
        console.print(
            f"[red]{result.remaining} operations remain after drain "
            f"({result.succeeded}/{result.attempted} succeeded)[/red]"
        )
    if result.stalled:
        console.print(f"[red]{len(result.stalled)} stalled operations need attention[/red]")


def _run(coro):
    try:
        return asyncio.run(coro)
    except SyncError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)


@app.command()
def status(
    db_path: str = DB_ARGUMENT,
    stall_threshold: int = typer.Option(
        SyncSettings.stall_threshold, envvar=f"{ENV_PREFIX}STALL_THRESHOLD", help="Failed attempts before an operation counts as stalled"
    ),
):
    """Show cache size and pending operations."""

    async def _status():
        store = SQLiteDurableStore(db_path)
        try:
            cache = LocalCache(store)
            log = PendingOperationLog(store)
            await cache.load()
            await log.load()
        finally:
            await store.close()
        return cache, log

    cache, log = _run(_status())

    table = Table(title="Sync Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Store", db_path)
    table.add_row("Cached observations", str(len(cache)))
    table.add_row("Pending operations", str(len(log)))
    stalled = [op for op in log if op.attempts >= stall_threshold]
    table.add_row("Stalled operations", str(len(stalled)))
    console.print(table)

    if not log.is_empty():
        queue_table = Table(title="Pending Operations")
        queue_table.add_column("#")
        queue_table.add_column("Action")
        queue_table.add_column("Record")
        queue_table.add_column("Attempts")
        for i, op in enumerate(log, 1):
            style = "red" if op.attempts >= stall_threshold else None
            queue_table.add_row(str(i), op.kind.value, op.record_id, str(op.attempts), style=style)
        console.print(queue_table)


@app.command("list")
def list_observations(
    db_path: str = DB_ARGUMENT,
    limit: int = typer.Option(50, "--limit", "-n", help="Rows to show"),
):
    """List cached observations, most recent first."""

    async def _load():
        store = SQLiteDurableStore(db_path)
        try:
            cache = LocalCache(store)
            await cache.load()
        finally:
            await store.close()
        return cache.list()

    records = sorted(_run(_load()), key=lambda r: (r.date, r.time), reverse=True)

    table = Table(title=f"Observations ({len(records)})")
    table.add_column("Date")
    table.add_column("Species", style="green")
    table.add_column("Count")
    table.add_column("Location")
    table.add_column("ID", style="dim")
    for record in records[:limit]:
        table.add_row(record.date, record.species_name, str(record.count), record.location, record.id)
    console.print(table)


@app.command()
def drain(
    db_path: str = DB_ARGUMENT,
    remote: str = REMOTE_OPTION,
    token: Optional[str] = TOKEN_OPTION,
    timeout: float = TIMEOUT_OPTION,
):
    """Push pending operations to the remote once."""

    settings = replace(
        SyncSettings.from_env(), db_path=db_path, remote_url=remote, token=token, timeout=timeout
    )

    async def _drain():
        ctx = await _open_context(settings)
        try:
            if not ctx.gate.is_online():
                console.print(f"[yellow]Remote {remote} is unreachable[/yellow]")
            return await ctx.start()
        finally:
            await ctx.close()

    result = _run(_drain())
    _print_result(result)
    if result.remaining:
        raise typer.Exit(code=1)


@app.command("import")
def import_backup(
    db_path: str = DB_ARGUMENT,
    backup: str = typer.Argument(..., help="JSON backup or backup archive"),
    remote: str = REMOTE_OPTION,
    token: Optional[str] = TOKEN_OPTION,
    timeout: float = TIMEOUT_OPTION,
):
    """Merge observations from a backup into the local set."""

    settings = replace(
        SyncSettings.from_env(), db_path=db_path, remote_url=remote, token=token, timeout=timeout
    )

    async def _import():
        records = load_backup(backup)
        ctx = await _open_context(settings)
        try:
            result = await ctx.import_batch(records)
            return result, ctx.pending_count()
        finally:
            await ctx.close()

    result, pending = _run(_import())
    console.print(
        f"[green]Imported {result.added} new and {result.updated} updated observations[/green]"
    )
    if pending:
        console.print(f"[yellow]{pending} operations queued for the next drain[/yellow]")


@app.command()
def watch(
    db_path: str = DB_ARGUMENT,
    remote: str = REMOTE_OPTION,
    token: Optional[str] = TOKEN_OPTION,
    timeout: float = TIMEOUT_OPTION,
    interval: float = typer.Option(SyncSettings.drain_interval, "--interval", "-i", envvar=f"{ENV_PREFIX}DRAIN_INTERVAL", help="Seconds between drains"),
    retry_max: float = typer.Option(SyncSettings.retry_max_seconds, envvar=f"{ENV_PREFIX}RETRY_MAX_SECONDS", help="Longest backoff between failing drains"),
):
    """Keep draining in the background until interrupted."""
    settings = replace(
        SyncSettings.from_env(),
        db_path=db_path,
        remote_url=remote,
        token=token,
        timeout=timeout,
        drain_interval=interval,
        retry_max_seconds=retry_max,
    )

    def _status_changed(new_status: SyncStatus):
        console.print(f"[dim]status: {new_status.value}[/dim]")

    def _connectivity_changed(online: bool):
        console.print(f"[dim]remote {'reachable' if online else 'unreachable'}[/dim]")

    async def _watch():
        ctx = await _open_context(settings)
        ctx.gate.add_listener(_connectivity_changed)
        scheduler = DrainScheduler(
            ctx,
            interval_seconds=settings.drain_interval,
            retry_max_seconds=settings.retry_max_seconds,
            on_status_change=_status_changed,
            on_drain_complete=_print_result,
        )
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await scheduler.start()
        console.print(f"[bold green]Watching {db_path} against {remote} (interval={interval}s)[/bold green]")
        try:
            await stop.wait()
        finally:
            console.print("\n[yellow]Shutdown signal received. Stopping gracefully...[/yellow]")
            await scheduler.stop()
            await ctx.close()

    _run(_watch())


@app.command()
def serve(
    db_path: str = typer.Option("observations_server.db", "--db", help="Server SQLite database"),
    tokens: Optional[str] = typer.Option(None, "--tokens", help="token:user pairs, comma separated"),
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
):
    """Start the reference observation server."""
    os.environ["OBSERVATION_SYNC_SERVER_DB_PATH"] = db_path
    if tokens:
        os.environ["OBSERVATION_SYNC_SERVER_TOKENS"] = tokens
    console.print(f"[bold green]Starting observation server on http://{host}:{port}[/bold green]")
    uvicorn.run("observation_sync.server:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

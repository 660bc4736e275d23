"""vesselstream CLI: live AIS ingestion and retention.

Commands:
  init-db : create the schema (retries while the database comes up)
  stream  : run the feed ingester and retention in the foreground
  purge   : run one retention pass and report what was deleted
  status  : row counts and data freshness
  serve   : run the query API (ingests in-process unless INGEST_ON_STARTUP=false)
"""
from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table

from vesselstream.config import settings

app = typer.Typer(
    name="vesselstream",
    help="Live AIS vessel position ingestion.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _init_db_or_exit() -> None:
    from vesselstream.database import init_db
    from vesselstream.exceptions import StoreBootstrapError

    try:
        init_db()
    except StoreBootstrapError as e:
        console.print(f"[red]Database unavailable:[/red] {e}")
        raise typer.Exit(1)


@app.command("init-db")
def init_db_command():
    """Create the vessels and position_history tables."""
    _configure_logging()
    with console.status("[bold]Creating database..."):
        _init_db_or_exit()
    console.print("[green]Database ready.[/green]")


@app.command("stream")
def stream(
    duration: str = typer.Option("0", "--duration", help="Stop after e.g. 30s, 5m, 1h (0 = run until interrupted)"),
):
    """Stream AIS data from the feed into the database."""
    duration_s = _parse_duration(duration)
    _configure_logging()
    from vesselstream.database import SessionLocal
    from vesselstream.exceptions import MissingCredentialsError
    from vesselstream.modules.runner import build_service, run_service

    _init_db_or_exit()
    try:
        service = build_service(settings, SessionLocal)
    except MissingCredentialsError as e:
        console.print(f"[red]{e}[/red]\nSet [cyan]AISSTREAM_API_KEY[/cyan] in the environment or .env file.")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"Streaming from [cyan]{service.feed.url}[/cyan] "
        f"({'until interrupted' if not duration_s else duration}), press Ctrl+C to stop"
    )
    try:
        stats = asyncio.run(run_service(service, duration_seconds=duration_s or None))
    except KeyboardInterrupt:
        stats = dict(service.pipeline.stats)
        console.print("[yellow]Interrupted.[/yellow]")

    _print_stats(stats)
    if stats.get("error"):
        raise typer.Exit(1)


def _parse_duration(s: str) -> int:
    """Parse duration string (30s, 5m, 1h) to seconds."""
    s = s.strip().lower()
    multipliers = {"s": 1, "m": 60, "h": 3600}
    try:
        if s and s[-1] in multipliers:
            return int(s[:-1]) * multipliers[s[-1]]
        return int(s)
    except ValueError:
        raise typer.BadParameter(f"Invalid duration {s!r} (use e.g. 30s, 5m, 1h)")


def _print_stats(stats: dict) -> None:
    table = Table(title="Ingestion summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


@app.command("purge")
def purge():
    """Run one retention pass (age window, then size ceiling)."""
    _configure_logging()
    from vesselstream.database import SessionLocal
    from vesselstream.modules.retention import RetentionManager

    manager = RetentionManager.from_settings(settings, SessionLocal)
    with console.status("[bold]Applying retention..."):
        report = manager.run_once()

    console.print(f"  Expired (> {settings.RETENTION_HOURS}h): {report.expired_deleted:,} rows deleted")
    if report.storage_bytes is not None:
        gib = report.storage_bytes / 1024 ** 3
        console.print(
            f"  Storage: {gib:.2f} GiB of {settings.RETENTION_MAX_STORAGE_GB:.0f} GiB ceiling "
            f"({settings.RETENTION_SIZE_SCOPE})"
        )
    else:
        console.print("  Storage: [dim]not measurable on this database[/dim]")
    if report.size_deleted:
        console.print(f"  [yellow]Size valve: {report.size_deleted:,} oldest rows deleted[/yellow]")
    for err in report.errors:
        console.print(f"  [red]Error: {err}[/red]")
    if report.errors:
        raise typer.Exit(1)


@app.command("status")
def status():
    """Show row counts and data freshness."""
    from sqlalchemy import func

    from vesselstream.database import SessionLocal
    from vesselstream.models.base import utcnow
    from vesselstream.models.position_record import PositionRecord
    from vesselstream.models.vessel import Vessel

    db = SessionLocal()
    try:
        vessel_count = db.query(Vessel).count()
        history_count = db.query(PositionRecord).count()
        latest = db.query(func.max(PositionRecord.created_at)).scalar()
        oldest = db.query(func.min(PositionRecord.created_at)).scalar()

        console.print("[bold]Data[/bold]")
        console.print(f"  Vessels tracked: {vessel_count:,}")
        console.print(f"  History rows: {history_count:,}")
        if latest:
            age_min = (utcnow() - latest).total_seconds() / 60
            color = "green" if age_min < 10 else "yellow" if age_min < 60 else "red"
            console.print(f"  Last position: [{color}]{age_min:.0f} min ago[/{color}]")
            span_h = (latest - oldest).total_seconds() / 3600
            console.print(f"  History span: {span_h:.1f}h (retention {settings.RETENTION_HOURS}h)")
        else:
            console.print("  Last position: [red]No data yet[/red]")
            console.print("\nRun [cyan]vesselstream stream[/cyan] to start ingesting.")
    finally:
        db.close()


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the query API."""
    import uvicorn

    console.print(f"API running at [cyan]http://{host}:{port}[/cyan], press Ctrl+C to stop")
    uvicorn.run("vesselstream.main:app", host=host, port=port)


if __name__ == "__main__":
    app()

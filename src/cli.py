#!/usr/bin/env python3
"""
CLI interface for the EMS event tracker.

Usage:
    python -m src.cli historical --start 2001-10-08 --end 2002-01-31
    python -m src.cli upcoming
    python -m src.cli continuous
    python -m src.cli status
"""

import asyncio
import logging
import signal
from datetime import date, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from src.ems import (
    CONTINUOUS_CONFIG,
    HISTORICAL_CONFIG,
    UPCOMING_CONFIG,
    EMSDatabase,
    HistoricalOverlapError,
    ScrapeStats,
    ScraperConfig,
    open_context,
)
from src.ems.continuous_scraper import SCRAPER_TYPE as CONTINUOUS_TYPE

app = typer.Typer(
    name="ems",
    help="EMS event tracker - versioned scraping of room reservations",
    add_completion=False,
)
console = Console()

DEFAULT_DB = "data/ems_events.db"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_config(base: ScraperConfig, interval: Optional[float]) -> ScraperConfig:
    try:
        return base.with_overrides(request_interval=interval)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1)


def _print_stats(title: str, stats: ScrapeStats) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Days scraped", f"{stats.total_days:,}")
    table.add_row("Events found", f"{stats.total_events:,}")
    table.add_row("New", f"[green]{stats.inserted:,}[/green]")
    table.add_row("Updated", f"{stats.updated:,}")
    table.add_row("Unchanged", f"{stats.unchanged:,}")
    table.add_row("Field changes", f"{stats.total_changes:,}")
    table.add_row("Field violations", f"{len(stats.violations):,}")
    table.add_row(
        "Failed days",
        f"[red]{len(stats.failed_days):,}[/red]" if stats.failed_days else "0",
    )
    console.print(table)

    if stats.failed_days:
        shown = ", ".join(day.isoformat() for day in stats.failed_days[:10])
        more = f" (+{len(stats.failed_days) - 10} more)" if len(stats.failed_days) > 10 else ""
        console.print(f"[yellow]Failed days:[/yellow] {shown}{more}")


def _make_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("[cyan]{task.fields[stats]}"),
        console=console,
        transient=True,
    )


@app.command()
def historical(
    start: Optional[datetime] = typer.Option(
        None, "--start", formats=["%Y-%m-%d"], help="First day (default: 2001-10-08)"
    ),
    end: Optional[datetime] = typer.Option(
        None, "--end", formats=["%Y-%m-%d"], help="Last day (default: today + 1 month)"
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between requests"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Backfill a closed date range, inserting new events only.

    Stops with exit status 1 if the range reaches an event that is already
    stored.

    Examples:
        ems historical
        ems historical --start 2010-01-01 --end 2010-12-31
    """
    setup_logging(verbose)
    config = _build_config(HISTORICAL_CONFIG, interval)

    async def run() -> ScrapeStats:
        async with open_context(config, db_path) as ctx:
            scraper = ctx.historical()
            default_start, default_end = scraper.default_range()
            start_date = start.date() if start else default_start
            end_date = end.date() if end else default_end

            if start_date > end_date:
                console.print("[red]Error: --start must not be after --end[/red]")
                raise typer.Exit(1)

            console.print("\n[bold blue]EMS Historical Scraper[/bold blue]")
            console.print(
                f"Range: [green]{start_date.isoformat()}[/green] to "
                f"[green]{end_date.isoformat()}[/green]"
            )
            console.print(f"Interval: {config.request_interval}s")
            console.print(f"Database: {db_path}\n")

            with _make_progress() as progress:
                task_id = progress.add_task(
                    "Backfilling", total=(end_date - start_date).days + 1, stats=""
                )

                async def update_progress(day: date, stats: ScrapeStats) -> None:
                    progress.update(
                        task_id,
                        completed=(day - start_date).days + 1,
                        stats=f"{day.isoformat()} | New: {stats.inserted:,}",
                    )

                if start is None and end is None:
                    return await scraper.scrape_historical(update_progress)
                return await scraper.scrape_date_range(start_date, end_date, update_progress)

    try:
        stats = asyncio.run(run())
    except HistoricalOverlapError as e:
        console.print(f"\n[red]Halted:[/red] {e}")
        raise typer.Exit(1)

    console.print()
    _print_stats("Historical Scrape Complete", stats)


@app.command()
def upcoming(
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between requests"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Refresh every day from today through the rolling horizon once.

    Example:
        ems upcoming --interval 3
    """
    setup_logging(verbose)
    config = _build_config(UPCOMING_CONFIG, interval)

    async def run() -> ScrapeStats:
        async with open_context(config, db_path) as ctx:
            scraper = ctx.upcoming()
            today, end_date = scraper.default_range()
            console.print("\n[bold blue]EMS Upcoming Scraper[/bold blue]")
            console.print(
                f"Window: [green]{today.isoformat()}[/green] to "
                f"[green]{end_date.isoformat()}[/green]\n"
            )

            with _make_progress() as progress:
                task_id = progress.add_task(
                    "Refreshing", total=(end_date - today).days + 1, stats=""
                )

                async def update_progress(day: date, stats: ScrapeStats) -> None:
                    progress.update(
                        task_id,
                        completed=(day - today).days + 1,
                        stats=f"New: {stats.inserted:,} | Updated: {stats.updated:,}",
                    )

                return await scraper.scrape_upcoming(update_progress)

    stats = asyncio.run(run())
    console.print()
    _print_stats("Upcoming Scrape Complete", stats)


@app.command()
def continuous(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Fetch and log only; write nothing"
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between requests"
    ),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Run the rolling-window loop until interrupted.

    Ctrl+C (or SIGTERM) finishes the current day and stops cleanly.

    Examples:
        ems continuous
        ems continuous --dry-run -v
    """
    setup_logging(verbose)
    config = _build_config(CONTINUOUS_CONFIG, interval)

    console.print("\n[bold blue]EMS Continuous Scraper[/bold blue]")
    if dry_run:
        console.print("[yellow]DRY RUN[/yellow] - No data will be written")
    console.print(f"Interval: {config.request_interval}s")
    console.print(f"Database: {db_path}")
    console.print("Press Ctrl+C to stop\n")

    async def run() -> None:
        async with open_context(config, db_path) as ctx:
            scraper = ctx.continuous(dry_run=dry_run)
            loop = asyncio.get_running_loop()

            def signal_handler():
                console.print("\n[yellow]Shutdown requested, finishing current day...[/yellow]")
                scraper.stop()

            try:
                loop.add_signal_handler(signal.SIGINT, signal_handler)
                loop.add_signal_handler(signal.SIGTERM, signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

            await scraper.start()

    asyncio.run(run())
    console.print("[green]Continuous scraper stopped[/green]")


@app.command()
def status(
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show the continuous scraper cursor and database totals.
    """
    db = EMSDatabase(db_path)
    cursor = db.get_cursor(CONTINUOUS_TYPE)

    console.print("\n[bold blue]Continuous Scraper[/bold blue]\n")
    if cursor is None:
        console.print("[dim]Never started[/dim]")
    else:
        if cursor.enabled:
            console.print("[green]● Enabled[/green]")
        else:
            console.print("[dim]○ Disabled[/dim]")
        console.print(f"Last completed date: {cursor.current_date.isoformat()}")
        console.print(f"Last update: {cursor.updated_at.isoformat(timespec='seconds')}")

    stats_data = db.get_stats()
    console.print(f"\n[bold]Total events:[/bold] {stats_data['total_events']:,}")
    console.print(f"[bold]No longer found:[/bold] {stats_data['no_longer_found']:,}")
    console.print(f"[bold]Checked today:[/bold] {stats_data['checked_today']:,}")


@app.command()
def event(
    event_id: int = typer.Argument(..., help="EMS event id"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show the current version of an event.

    Example:
        ems event 123456
    """
    db = EMSDatabase(db_path)
    record = db.get_event(event_id)
    if not record:
        console.print(f"[red]Event not found: {event_id}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold blue]{record['event_name'] or '(untitled)'}[/bold blue]")
    if record["no_longer_found_at"]:
        console.print(f"[yellow]No longer found since {record['no_longer_found_at']}[/yellow]")

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in record.items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def history(
    event_id: int = typer.Argument(..., help="EMS event id"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show the archived versions of an event.

    Example:
        ems history 123456
    """
    db = EMSDatabase(db_path)

    record = db.get_event(event_id)
    if not record:
        console.print(f"[red]Event not found: {event_id}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold blue]Event: {record['event_name']}[/bold blue]")
    console.print(f"Current version: {record['version_number']}")
    console.print(f"First seen: {record['created_at']}")
    console.print(f"Last updated: {record['updated_at']}")

    history_records = db.get_event_history(event_id)
    if not history_records:
        console.print("\n[yellow]No history records (event hasn't changed)[/yellow]")
        return

    console.print(f"\n[bold]History ({len(history_records)} archived versions):[/bold]\n")

    table = Table(show_header=True)
    table.add_column("Version", justify="right")
    table.add_column("Archived", style="dim")
    table.add_column("Name")
    table.add_column("Start")
    table.add_column("Room")
    table.add_column("Changes", justify="right")

    for row in history_records:
        table.add_row(
            str(row["version_number"]),
            str(row.get("archived_at", ""))[:19],
            str(row.get("event_name") or ""),
            str(row.get("event_start") or ""),
            str(row.get("room") or ""),
            str(row.get("change_count", "")),
        )

    console.print(table)


@app.command()
def missing(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    List events flagged as no longer found.
    """
    db = EMSDatabase(db_path)
    rows = db.get_no_longer_found_events(limit=limit)

    if not rows:
        console.print("[green]No missing events[/green]")
        return

    table = Table(title=f"No Longer Found ({len(rows)} shown)", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name", max_width=40)
    table.add_column("Start")
    table.add_column("Room", max_width=25)
    table.add_column("Flagged", style="dim")

    for row in rows:
        table.add_row(
            str(row["id"]),
            str(row["event_name"] or "")[:40],
            str(row["event_start"] or ""),
            str(row["room"] or ""),
            str(row["no_longer_found_at"])[:19],
        )

    console.print(table)


@app.command()
def violations(
    event_id: Optional[int] = typer.Option(None, "--event", "-e", help="Filter by event id"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show"),
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    List recent constant-field violations.
    """
    db = EMSDatabase(db_path)
    rows = db.get_violations(event_id=event_id, limit=limit)

    if not rows:
        console.print("[green]No constant field violations recorded[/green]")
        return

    table = Table(title="Constant Field Violations", show_header=True)
    table.add_column("Event", style="cyan")
    table.add_column("Field")
    table.add_column("Expected")
    table.add_column("Actual", style="yellow")
    table.add_column("When", style="dim")

    for row in rows:
        table.add_row(
            str(row["event_id"]),
            row["field_name"],
            row["expected_value"],
            row["actual_value"],
            str(row["violation_time"])[:19],
        )

    console.print(table)


@app.command()
def stats(
    db_path: str = typer.Option(DEFAULT_DB, "--db", help="Database path"),
) -> None:
    """
    Show database statistics.
    """
    db = EMSDatabase(db_path)
    stats_data = db.get_stats()

    console.print("\n[bold blue]Database Statistics[/bold blue]\n")
    console.print(f"[bold]Total events:[/bold] {stats_data['total_events']:,}")
    console.print(f"[bold]Events with history:[/bold] {stats_data['events_with_history']:,}")
    console.print(f"[bold]History records:[/bold] {stats_data['history_records']:,}")
    console.print(f"[bold]Highest version:[/bold] {stats_data['max_version']:,}")
    console.print(f"[bold]No longer found:[/bold] {stats_data['no_longer_found']:,}")
    console.print(f"[bold]Checked today:[/bold] {stats_data['checked_today']:,}")
    console.print(f"[bold]Constant violations:[/bold] {stats_data['constant_violations']:,}")


if __name__ == "__main__":
    app()

"""
Main CLI application using Typer.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from rich.console import Console
from rich.table import Table

from ..adapters.caldav_client import DavClient
from ..adapters.mock_caldav_client import MockCalendarClient
from ..config import AppConfig, load_config
from ..domain.exceptions import OpenSlotsError
from ..domain.models import TimeWindow
from ..domain.slot_grid import SlotGrid
from ..log import configure_logging
from ..services.availability import AvailabilityService

app = typer.Typer(
    name="openslots",
    help="Compute open calendar time from CalDAV availability and booked calendars",
    add_completion=False
)
server_app = typer.Typer(help="Commands for running the scheduling server")
calendar_app = typer.Typer(help="Commands for interacting with calendars on a CalDAV server")
app.add_typer(server_app, name="server")
app.add_typer(calendar_app, name="calendar")

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
MockOption = Annotated[
    Optional[Path],
    typer.Option("--mock", help="Read calendars from a YAML file instead of a CalDAV server."),
]


def _load(config_file: Optional[Path]) -> AppConfig:
    config = load_config(config_file)
    configure_logging(config.log_level)
    return config


def _build_client(config: AppConfig, mock_file: Optional[Path]):
    """Create the calendar client: mock data if requested, CalDAV otherwise."""
    if mock_file:
        console.print(f"[yellow]⚠  Mock mode: reading calendars from {mock_file}[/yellow]")
        return MockCalendarClient.load_from_file(mock_file)

    config.caldav.require_complete()
    return DavClient(
        url=config.caldav.url,
        username=config.caldav.username,
        password=config.caldav.password,
        request_timeout=config.caldav.request_timeout,
        timezones=config.calendars.timezones(),
    )


def _build_service(config: AppConfig, client) -> AvailabilityService:
    return AvailabilityService(
        calendar_client=client,
        availability_calendar=config.calendars.availability.name,
        booked_calendar=config.calendars.booked.name,
        granularity=config.engine.granularity(),
        recurrence_cap=config.engine.recurrence_cap,
        fetch_timeout=config.engine.fetch_timeout,
    )


def _parse_window(start: str, end: str) -> TimeWindow:
    """Parse ISO-8601 bounds; bounds without an offset are taken as UTC."""
    try:
        return TimeWindow.of(pendulum.parse(start, tz="UTC"), pendulum.parse(end, tz="UTC"))
    except ValueError as e:
        console.print(f"[red]Could not parse date: {e}[/red]")
        raise typer.Exit(1)


def _slot_size(minutes: Optional[int], service: AvailabilityService):
    """Slot size from --granularity, else the configured one."""
    return pendulum.duration(minutes=minutes) if minutes else service.granularity


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


def _print_grid(grid: SlotGrid, title: str) -> None:
    ranges = grid.open_ranges()
    open_count = sum(grid.slots)

    console.print(
        f"\n[bold cyan]{title}[/bold cyan] {grid.window} "
        f"({open_count} of {len(grid)} slot(s) open, "
        f"{int(grid.granularity.total_seconds() // 60)} min each)\n"
    )
    if not ranges:
        console.print("[yellow]⚠ No open time in this window.[/yellow]\n")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Start", style="bold yellow")
    table.add_column("End")
    table.add_column("Minutes", justify="right", style="dim")
    for occurrence in ranges:
        table.add_row(
            occurrence.start.format("YYYY-MM-DD HH:mm"),
            occurrence.end.format("YYYY-MM-DD HH:mm"),
            str(occurrence.duration_minutes()),
        )
    console.print(table)
    console.print()


@app.command()
def availability(
    start: Annotated[str, typer.Argument(help="Start of the window (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="End of the window (ISO-8601)")],
    config_file: ConfigOption = None,
    mock: MockOption = None,
    granularity: Annotated[Optional[int], typer.Option("--granularity", "-g", help="Slot size in minutes")] = None,
):
    """
    Show open time: availability calendar minus booked calendar.

    Examples:

        openslots availability 2024-11-25T00:00Z 2024-11-27T00:00Z

        openslots availability 2024-11-25 2024-11-26 --granularity 15 --mock calendars.yaml
    """
    try:
        config = _load(config_file)
        window = _parse_window(start, end)
        service = _build_service(config, _build_client(config, mock))

        grid = asyncio.run(service.compute_availability(
            availability_calendar=service.availability_calendar,
            booked_calendar=service.booked_calendar,
            window=window,
            granularity=_slot_size(granularity, service),
        ))
        _print_grid(grid, "Open time")

    except (OpenSlotsError, FileNotFoundError, ValueError, TimeoutError) as e:
        _fail(e)


@app.command()
def book(
    name: Annotated[str, typer.Argument(help="Name of the booking")],
    start: Annotated[str, typer.Argument(help="Start of the booking (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="End of the booking (ISO-8601)")],
    config_file: ConfigOption = None,
    mock: MockOption = None,
):
    """
    Book time on the booked calendar if it is entirely open.
    """
    try:
        config = _load(config_file)
        window = _parse_window(start, end)
        service = _build_service(config, _build_client(config, mock))

        event = asyncio.run(service.book(name=name, window=window))
        console.print(f"\n[bold green]✓ Booked '{name}' for {window}[/bold green] (uid {event.uid})\n")

    except (OpenSlotsError, FileNotFoundError, ValueError, TimeoutError) as e:
        _fail(e)


@server_app.command("start")
def server_start(
    config_file: ConfigOption = None,
    mock: MockOption = None,
):
    """
    Start the scheduling HTTP server.
    """
    import uvicorn

    from ..api.app import create_app

    try:
        config = _load(config_file)
        service = _build_service(config, _build_client(config, mock))
    except (OpenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"[bold]Listening on {config.server.host}:{config.server.port}[/bold]")
    uvicorn.run(
        create_app(service),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


@calendar_app.command("create")
def calendar_create(
    name: Annotated[str, typer.Argument(help="Display name of the new calendar")],
    config_file: ConfigOption = None,
):
    """
    Create a new calendar.
    """
    try:
        config = _load(config_file)
        client = _build_client(config, None)
        calendar = client.create_calendar(name)
        console.print(f"[green]✓ Created calendar {calendar.display_name} at {calendar.path}[/green]")

    except (OpenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@calendar_app.command("list")
def calendar_list(
    config_file: ConfigOption = None,
):
    """
    List all calendars.
    """
    try:
        config = _load(config_file)
        client = _build_client(config, None)
        calendars = client.list_calendars()

        if not calendars:
            console.print("[yellow]No calendars found.[/yellow]")
            return

        table = Table(title="Calendars", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="bold yellow")
        table.add_column("Path", style="dim")
        table.add_column("Timezone")
        for calendar in calendars:
            table.add_row(calendar.display_name, calendar.path, client.calendar_timezone(calendar))

        console.print()
        console.print(table)
        console.print()

    except (OpenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@calendar_app.command("list-events")
def calendar_list_events(
    name: Annotated[str, typer.Argument(help="Name of the calendar")],
    start: Annotated[str, typer.Argument(help="Start of the window (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="End of the window (ISO-8601)")],
    config_file: ConfigOption = None,
    mock: MockOption = None,
):
    """
    List events in a calendar between two datetimes.
    """
    try:
        config = _load(config_file)
        window = _parse_window(start, end)
        client = _build_client(config, mock)
        events = client.get_events(name, window)

        table = Table(title=f"Events in {name}", show_header=True, header_style="bold cyan")
        table.add_column("Summary", style="bold yellow")
        table.add_column("Start")
        table.add_column("End")
        table.add_column("Recurrence", style="dim")
        for event in events:
            table.add_row(
                event.summary or "",
                event.anchor_start.to_iso8601_string(),
                event.anchor_end.to_iso8601_string(),
                event.recurrence_rule or "",
            )

        console.print()
        console.print(table)
        console.print()

    except (OpenSlotsError, FileNotFoundError, ValueError) as e:
        _fail(e)


@calendar_app.command("availability")
def calendar_availability(
    name: Annotated[str, typer.Argument(help="Name of the calendar")],
    start: Annotated[str, typer.Argument(help="Start of the window (ISO-8601)")],
    end: Annotated[str, typer.Argument(help="End of the window (ISO-8601)")],
    config_file: ConfigOption = None,
    mock: MockOption = None,
    granularity: Annotated[Optional[int], typer.Option("--granularity", "-g", help="Slot size in minutes")] = None,
):
    """
    Show the time covered by any event of a single calendar.
    """
    try:
        config = _load(config_file)
        window = _parse_window(start, end)
        service = _build_service(config, _build_client(config, mock))

        grid = asyncio.run(service.calendar_availability(
            calendar=name,
            window=window,
            granularity=_slot_size(granularity, service),
        ))
        _print_grid(grid, f"Covered by {name}")

    except (OpenSlotsError, FileNotFoundError, ValueError, TimeoutError) as e:
        _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]openslots[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()

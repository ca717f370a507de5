from __future__ import annotations

import asyncio
import importlib.metadata as md
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.live import Live
from rich.table import Table

from .config import GpsMeterConfig, load_config, load_config_or_default, resolve_config_path
from .core.errors import LocationUnavailableError
from .core.events import Event, EventBus, EventType
from .core.geodesy import format_distance, format_duration, format_speed
from .core.sample_processor import SampleProcessor
from .core.tracker import TripTracker
from .domain.models import SpeedUnit, TrackingSnapshot, TripAggregate
from .infrastructure.database import AsyncTripRepository
from .infrastructure.gps import AsyncGPSClient, MockGPSClient
from .logging_setup import setup_logging

T = TypeVar("T")

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="gpsmeter CLI")
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to gpsmeter.yml")


def _load(config: Path | None) -> GpsMeterConfig:
    try:
        cfg = load_config_or_default(config)
    except ValueError as exc:
        console.print(f"[red]Config validation failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    setup_logging(cfg.logging, console=console)
    return cfg


def _with_repo(cfg: GpsMeterConfig, fn: Callable[[AsyncTripRepository], Awaitable[T]]) -> T:
    async def runner() -> T:
        repo = AsyncTripRepository(cfg.database.path)
        await repo.init_schema()
        try:
            return await fn(repo)
        finally:
            await repo.close()

    return asyncio.run(runner())


def _fmt_time(ms: int | None, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime(fmt)


def _trip_duration(trip: TripAggregate) -> str:
    if trip.ended_at_ms is None:
        return "-"
    return format_duration(trip.duration_seconds)


def _speed_label(unit: SpeedUnit) -> str:
    return "mph" if unit == SpeedUnit.MPH else "km/h"


def _render(snapshot: TrackingSnapshot, unit: SpeedUnit) -> Table:
    label = _speed_label(unit)
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    state = snapshot.state.value + (" (auto)" if snapshot.auto_paused else "")
    table.add_row("Trip", f"#{snapshot.trip_id} {state}")
    table.add_row("Speed", f"{format_speed(snapshot.speed_kmh, unit)} {label}")
    table.add_row("Distance", format_distance(snapshot.total_distance_meters, unit))
    table.add_row("Time", format_duration(snapshot.elapsed_seconds))
    table.add_row("Avg / Max", (
        f"{format_speed(snapshot.avg_speed_kmh, unit, 1)} / "
        f"{format_speed(snapshot.max_speed_kmh, unit, 1)} {label}"
    ))
    accuracy = f" ±{snapshot.accuracy:.0f} m" if snapshot.accuracy is not None else ""
    table.add_row("GPS", f"{snapshot.gps_health.value}{accuracy}")
    return table


@app.callback()
def main() -> None:
    """GPS trip tracker: live speed, distance and trip history."""


@app.command()
def version() -> None:
    """Print version information."""
    try:
        dist_version = md.version("gpsmeter")
    except md.PackageNotFoundError:
        from . import __version__

        dist_version = __version__
    console.print(f"gpsmeter {dist_version}")


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/gpsmeter.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except Exception as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK.")
    console.print(f"- database: {cfg.database.path}")
    console.print(f"- unit: {cfg.tracking.unit.value}")
    console.print(f"- gpsd: {cfg.gps.host}:{cfg.gps.port}" + (" (mock)" if cfg.gps.mock_mode else ""))


@app.command(name="config-which")
def config_which(config: Path | None = ConfigOption) -> None:
    """Print resolved config path by priority rules."""
    console.print(str(resolve_config_path(config)))


@app.command()
def track(
    config: Path | None = ConfigOption,
    duration: float | None = typer.Option(None, "--duration", help="Stop after SECONDS"),
    mock: bool = typer.Option(False, "--mock", help="Use the simulated location source"),
    auto_pause: bool | None = typer.Option(None, "--auto-pause/--no-auto-pause"),
) -> None:
    """Track a trip until Ctrl-C (or --duration); resumes an interrupted trip first."""
    cfg = _load(config)
    if auto_pause is not None:
        cfg.tracking.auto_pause_enabled = auto_pause

    try:
        trip = asyncio.run(_track(cfg, duration, mock or cfg.gps.mock_mode))
    except LocationUnavailableError as exc:
        console.print(f"[red]Location unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        console.print("Stopped.")
        return

    if trip is not None:
        _print_summary(trip, cfg.tracking.unit)


async def _track(cfg: GpsMeterConfig, duration: float | None, mock: bool) -> TripAggregate | None:
    repo = AsyncTripRepository(cfg.database.path)
    await repo.init_schema()
    source = MockGPSClient.from_config(cfg.gps) if mock else AsyncGPSClient(cfg.gps)

    bus = EventBus()

    async def announce(event: Event) -> None:
        console.log(f"{event.type.name.lower().replace('_', ' ')}: {event.data}")

    for event_type in (
        EventType.TRIP_RESTORED,
        EventType.TRIP_PAUSED,
        EventType.TRIP_RESUMED,
        EventType.GPS_FIX_LOST,
        EventType.PERSISTENCE_ERROR,
    ):
        bus.subscribe(event_type, announce)
    await bus.start()

    tracker = TripTracker(repo, source, cfg.tracking, bus=bus)
    try:
        async with tracker.tracking():
            loop = asyncio.get_running_loop()
            deadline = loop.time() + duration if duration is not None else None
            with Live(_render(tracker.snapshot(), cfg.tracking.unit), console=console) as live:
                while deadline is None or loop.time() < deadline:
                    await asyncio.sleep(0.5)
                    live.update(_render(tracker.snapshot(), cfg.tracking.unit))
    finally:
        await bus.stop()
        await repo.close()
    return tracker.trip


def _print_summary(trip: TripAggregate, unit: SpeedUnit) -> None:
    label = _speed_label(unit)
    console.print(f"[bold]Trip #{trip.id}[/bold] ({trip.status.value})")
    console.print(f"- started: {_fmt_time(trip.started_at_ms)}")
    console.print(f"- ended: {_fmt_time(trip.ended_at_ms)}")
    console.print(f"- duration: {_trip_duration(trip)}")
    console.print(f"- distance: {format_distance(trip.total_distance_meters, unit)}")
    console.print(f"- avg speed: {format_speed(trip.avg_speed_kmh, unit, 1)} {label}")
    console.print(f"- max speed: {format_speed(trip.max_speed_kmh, unit, 1)} {label}")


@app.command()
def trips(
    config: Path | None = ConfigOption,
    limit: int = typer.Option(20, "--limit", "-n", min=1),
    offset: int = typer.Option(0, "--offset", min=0),
) -> None:
    """List recorded trips, newest first."""
    cfg = _load(config)
    unit = cfg.tracking.unit
    rows = _with_repo(cfg, lambda repo: repo.list_trips(limit=limit, offset=offset))

    if not rows:
        console.print("No trips recorded.")
        return

    label = _speed_label(unit)
    table = Table(title=f"Trips (speeds in {label})")
    table.add_column("ID", justify="right")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Distance", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Status")
    for trip in rows:
        table.add_row(
            str(trip.id),
            _fmt_time(trip.started_at_ms, "%Y-%m-%d %H:%M"),
            _trip_duration(trip),
            format_distance(trip.total_distance_meters, unit),
            format_speed(trip.avg_speed_kmh, unit, 1),
            format_speed(trip.max_speed_kmh, unit, 1),
            trip.status.value,
        )
    console.print(table)


@app.command()
def show(trip_id: int = typer.Argument(...), config: Path | None = ConfigOption) -> None:
    """Show one trip with its point count and totals recomputed from points."""
    cfg = _load(config)
    unit = cfg.tracking.unit

    async def fetch(repo: AsyncTripRepository) -> tuple[Any, Any]:
        trip = await repo.get_trip(trip_id)
        if trip is None:
            return None, []
        return trip, await repo.get_points_for_trip(trip_id)

    trip, points = _with_repo(cfg, fetch)
    if trip is None:
        console.print(f"[red]Trip {trip_id} not found[/red]")
        raise typer.Exit(code=1)

    _print_summary(trip, unit)
    totals = SampleProcessor(cfg.tracking.noise_floor_kmh).recompute_totals(points)
    console.print(f"- points: {totals.points_count}")
    console.print(f"- distance from points: {format_distance(totals.total_distance_meters, unit)}")
    console.print(
        f"- max speed from points: {format_speed(totals.max_speed_kmh, unit, 1)} {_speed_label(unit)}"
    )


@app.command()
def delete(
    trip_id: int = typer.Argument(...),
    config: Path | None = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a trip and all of its points."""
    cfg = _load(config)
    if not yes:
        typer.confirm(f"Delete trip {trip_id}?", abort=True)

    if not _with_repo(cfg, lambda repo: repo.delete_trip(trip_id)):
        console.print(f"[red]Trip {trip_id} not found[/red]")
        raise typer.Exit(code=1)
    console.print(f"Deleted trip {trip_id}")


@app.command()
def stats(config: Path | None = ConfigOption) -> None:
    """Totals across all recorded trips."""
    cfg = _load(config)
    unit = cfg.tracking.unit
    data = _with_repo(cfg, lambda repo: repo.get_stats())
    console.print(f"trips: {data['trips_total']} ({data['trips_completed']} completed)")
    console.print(f"points: {data['points_total']}")
    console.print(f"distance: {format_distance(data['distance_total_meters'], unit)}")
    console.print(f"top speed: {format_speed(data['max_speed_kmh'], unit, 1)} {_speed_label(unit)}")


def launch() -> None:
    """Entry point when executed as a module/script."""
    cli()


# Click command export (used by the console script and tests)
cli = typer.main.get_command(app)

__all__ = ["app", "cli"]

if __name__ == "__main__":
    launch()

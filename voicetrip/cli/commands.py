"""CLI commands for voicetrip.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import sys
from typing import Optional

import typer
from loguru import logger
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from voicetrip.core import SessionCoordinator, VoicetripError, list_input_devices
from voicetrip.core.config import ENDPOINT_ENV, AppConfig
from voicetrip.cli.utils import console, make_device_table, make_session_panel, suppress_stderr

app = typer.Typer(help="Voice round-trip client: record, send to a server, play the answer")

app_config = AppConfig()


def _configure_logging(verbose: bool) -> None:
    """Configure loguru log level based on verbose flag."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _build_coordinator(endpoint: Optional[str], history: bool) -> SessionCoordinator:
    return SessionCoordinator.from_config(app_config, endpoint=endpoint, history=history)


async def _talk(coordinator: SessionCoordinator, duration: Optional[float]) -> None:
    if not duration:
        console.print("[info]Press Enter to stop recording[/info]")
    with Live(make_session_panel(coordinator.state), console=console, refresh_per_second=10) as live:
        unsubscribe = coordinator.subscribe(lambda state: live.update(make_session_panel(state)))
        try:
            coordinator.start_capture()
            if duration:
                await asyncio.sleep(duration)
            else:
                await asyncio.to_thread(sys.stdin.readline)
            coordinator.stop_capture()
            await coordinator.submit()
            await coordinator.playback.wait_finished()
        finally:
            unsubscribe()
            await coordinator.aclose()


async def _send(coordinator: SessionCoordinator) -> None:
    with Live(make_session_panel(coordinator.state), console=console, refresh_per_second=10) as live:
        unsubscribe = coordinator.subscribe(lambda state: live.update(make_session_panel(state)))
        try:
            await coordinator.submit()
            await coordinator.playback.wait_finished()
        finally:
            unsubscribe()
            await coordinator.aclose()


@app.command()
def devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    _configure_logging(verbose)
    try:
        if verbose:
            found = list_input_devices(driver_filter=driver)
        else:
            with suppress_stderr():
                found = list_input_devices(driver_filter=driver)
    except OSError as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")
        raise typer.Exit(1)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(found), title=f"[bold]{title}[/bold]"))


@app.command()
def talk(
    duration: Optional[float] = typer.Option(
        None, help="Recording duration in seconds. Leave empty to stop with Enter."
    ),
    endpoint: Optional[str] = typer.Option(
        None, help=f"Upload endpoint URL. Overrides server.endpoint and ${ENDPOINT_ENV}."
    ),
    history: bool = typer.Option(
        True, "--history/--no-history", help="Append captures and round trips to the JSONL log."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Record a clip, send it to the server and play the answer."""
    _configure_logging(verbose)
    try:
        coordinator = _build_coordinator(endpoint, history)
        asyncio.run(_talk(coordinator, duration))
    except VoicetripError as e:
        console.print(f"[error]✗ {e.detail}[/error]")
        raise typer.Exit(1)
    console.print("[success]✓ Round trip completed[/success]")


@app.command()
def send(
    endpoint: Optional[str] = typer.Option(
        None, help=f"Upload endpoint URL. Overrides server.endpoint and ${ENDPOINT_ENV}."
    ),
    history: bool = typer.Option(
        True, "--history/--no-history", help="Append the round trip to the JSONL log."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Send the last recording to the server again and play the answer."""
    _configure_logging(verbose)
    try:
        coordinator = _build_coordinator(endpoint, history)
        asyncio.run(_send(coordinator))
    except VoicetripError as e:
        console.print(f"[error]✗ {e.detail}[/error]")
        raise typer.Exit(1)
    console.print("[success]✓ Round trip completed[/success]")


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Show the configured endpoint and the files voicetrip uses."""
    _configure_logging(verbose)

    console.rule("[bold]📋 voicetrip Status[/bold]")
    try:
        server = app_config.get_server_config()
    except VoicetripError as e:
        console.print(f"[error]✗ {e.detail}[/error]")
        raise typer.Exit(1)

    capture_path = app_config.get_capture_path()
    info_grid = Table.grid(padding=(0, 1))
    info_grid.add_column(style="dim", justify="right")
    info_grid.add_column()
    info_grid.add_row(
        "Endpoint:",
        server['endpoint'] or f"[warning]not configured (set server.endpoint or ${ENDPOINT_ENV})[/warning]",
    )
    info_grid.add_row("Response format:", server['response_format'])
    info_grid.add_row("Timeout:", f"{server['timeout']:g}s")
    if capture_path.exists():
        info_grid.add_row("Capture file:", f"{capture_path} ({capture_path.stat().st_size} bytes)")
    else:
        info_grid.add_row("Capture file:", f"{capture_path} [dim](no recording yet)[/dim]")
    info_grid.add_row("Playback file:", str(app_config.get_temp_playback_path()))
    info_grid.add_row("Log:", str(app_config.get_log_path()))
    console.print(Panel(info_grid, title="[bold]Configuration[/bold]"))

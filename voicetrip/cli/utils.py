"""CLI utilities for voicetrip.

This module provides the Rich console and the renderables used by the
commands: the device table and the live session panel.
"""

import os
from contextlib import contextmanager
from typing import List

from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from voicetrip.core.processing import draw_level_frame
from voicetrip.core.state import SessionState

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by list_input_devices().

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def make_session_panel(state: SessionState) -> Panel:
    """Render a :class:`SessionState` as the live session panel.

    The level frame is drawn as a block-character waveform.  A spinner is
    shown while a round trip is busy.
    """
    wave = Text(draw_level_frame(state.levels), style="bold green" if state.recording else "dim")

    status: RenderableType
    if state.busy:
        status = Spinner("dots", text=Text("Waiting for server...", style="info"))
    elif state.playing:
        status = Text("🔊 Playing response", style="success")
    elif state.recording:
        status = Text("🎙 Recording", style="bold red")
    else:
        status = Text("Idle", style="dim")

    rows: List[RenderableType] = [wave, status]
    if state.transcription:
        rows.append(Text(f"You: {state.transcription}", style="dim"))
    if state.response_text:
        rows.append(Text(f"Reply: {state.response_text}"))
    if state.last_error:
        rows.append(Text(f"✗ {state.last_error}", style="error"))

    return Panel(Group(*rows), title="[bold]🎙 voicetrip[/bold]", border_style="green", expand=False)


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    # Save original stderr file descriptor
    original_stderr_fd = os.dup(2)
    try:
        # Open /dev/null and redirect stderr to it
        null_fd = os.open(os.devnull, os.O_WRONLY)
        os.dup2(null_fd, 2)
        os.close(null_fd)
        yield
    finally:
        # Restore original stderr
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)


__all__ = ["console", "suppress_stderr", "make_device_table", "make_session_panel"]

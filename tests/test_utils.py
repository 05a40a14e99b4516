"""Utility tests for voicetrip."""

from rich.console import Console

from voicetrip.cli.utils import console, make_device_table, make_session_panel
from voicetrip.core.levels import baseline_frame
from voicetrip.core.state import SessionState


def _render(renderable) -> str:
    buffer = Console(width=80, record=True)
    buffer.print(renderable)
    return buffer.export_text()


def test_console_available():
    """Test that console is available."""
    assert console is not None
    assert hasattr(console, 'print')


def test_device_table_marks_default():
    table = make_device_table([
        {"id": 1, "name": "Mic", "driver": "pulse", "channels": 1, "rate": 48000, "is_default": True},
    ])
    text = _render(table)
    assert "Mic" in text
    assert "PULSE" in text
    assert "DEFAULT" in text


def test_session_panel_idle():
    text = _render(make_session_panel(SessionState(levels=baseline_frame())))
    assert "Idle" in text
    assert "▂" * 20 in text


def test_session_panel_shows_reply_and_error():
    state = SessionState(
        levels=baseline_frame(),
        transcription="hola",
        response_text="hello",
        last_error="Server returned HTTP 500",
    )
    text = _render(make_session_panel(state))
    assert "You: hola" in text
    assert "Reply: hello" in text
    assert "HTTP 500" in text


def test_session_panel_playing():
    text = _render(make_session_panel(SessionState(levels=baseline_frame(), playing=True)))
    assert "Playing response" in text

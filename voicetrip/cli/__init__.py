"""Command-line interface for voicetrip."""

from .commands import app

__all__ = ["app"]

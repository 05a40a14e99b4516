"""voicetrip - Voice round-trip client.

Captures a microphone clip, shows live input levels, sends the clip to a
transcription/response service and plays back the audio it returns.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]

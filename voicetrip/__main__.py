"""Entry point for voicetrip when invoked as a module or command."""

import sys

from loguru import logger

from voicetrip.cli import app
from voicetrip.cli.utils import console
from voicetrip.core.errors import VoicetripError


def main() -> None:
    """Run the CLI, turning uncaught failures into a message and exit code."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled by user[/warning]")
        sys.exit(0)
    except VoicetripError as e:
        console.print(f"[error]✗ {e.detail}[/error] [dim]({e.code})[/dim]")
        sys.exit(1)
    except Exception as e:
        logger.opt(exception=e).debug("Unhandled error")
        console.print(f"[error]Error: {str(e)}[/error]")
        sys.exit(1)


if __name__ == "__main__":
    main()

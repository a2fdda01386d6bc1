"""CLI output utilities for consistent messaging.

User-facing messages go through the helpers below. Diagnostic logging from
the engine modules goes through the ``zprof`` logger, which
``setup_logging`` routes to stderr via rich.
"""

import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

# Environment variable selecting the diagnostic log level
LOG_LEVEL_ENV_VAR = "ZPROF_LOG_LEVEL"

_console = Console()
_stderr_console = Console(stderr=True)


def setup_logging() -> logging.Logger:
    """Attach a rich handler to the ``zprof`` logger.

    Level comes from ZPROF_LOG_LEVEL (default WARNING). Safe to call more
    than once; existing handlers are replaced.
    """
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    logger = logging.getLogger("zprof")
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(console=_stderr_console, show_path=False)
    handler.setLevel(level)
    logger.addHandler(handler)

    logger.debug("Logging initialized at level %s", level_name)
    return logger


def success(message: str) -> None:
    """Print a success message with green checkmark."""
    _console.print(f"[green]✓[/green] {message}")


def error(message: str) -> None:
    """Print an error message with red X."""
    _console.print(f"[red]✗[/red] {message}")


def warning(message: str) -> None:
    """Print a warning message with yellow exclamation."""
    _console.print(f"[yellow]![/yellow] {message}")


def info(message: str) -> None:
    """Print an info message (no prefix)."""
    _console.print(message)


def dim(message: str) -> None:
    """Print a dimmed message (for secondary info)."""
    _console.print(f"[dim]{message}[/dim]")


def recovery(backup_path: Path) -> None:
    """Point the user at a retained backup they can restore from."""
    _console.print(f"  [bold]Backup retained at:[/bold] {escape(str(backup_path))}")

"""Progress notifications for composition and indexing runs.

A progress sink is purely observational: the pipeline calls it through
``notify()``, never awaits it, and ignores any exception it raises. Sinks
print with plain ``console.print()`` calls (no Rich ``Live``/``Progress``
background threads) so they are safe to call from inside the event loop.
"""

import time
from typing import Literal, Protocol

from loguru import logger
from rich.console import Console

Level = Literal["info", "success", "error"]


class ProgressSink(Protocol):
    """Fire-and-forget notification target (toast, console, log...)."""

    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


def notify(sink: ProgressSink | None, level: Level, message: str) -> None:
    """Deliver a notification without letting the sink affect control flow."""
    if sink is None:
        return
    try:
        getattr(sink, level)(message)
    except Exception as e:
        logger.debug(f"Progress sink failed on {level} notification: {e}")


class LoggingProgressSink:
    """Mirrors notifications into the loguru log."""

    def info(self, message: str) -> None:
        logger.info(message)

    def success(self, message: str) -> None:
        logger.success(message)

    def error(self, message: str) -> None:
        logger.error(message)


class ConsoleProgressSink:
    """Print-based progress output for the CLI.

    Example:
        sink = ConsoleProgressSink(console)
        sink.info("Processing 12 files...")
        sink.success("Indexing complete: 12 files processed")
    """

    def __init__(self, console: Console, show_elapsed: bool = True):
        """Initialize console sink.

        Args:
            console: Rich Console instance for formatted output
            show_elapsed: Prefix messages with the time since the sink was created
        """
        self.console = console
        self.show_elapsed = show_elapsed
        self._start_time = time.time()

    def _prefix(self) -> str:
        if not self.show_elapsed:
            return ""
        elapsed = time.time() - self._start_time
        return f"[dim]{elapsed:6.1f}s[/dim] "

    def info(self, message: str) -> None:
        self.console.print(f"{self._prefix()}[dim]→[/dim] {message}")

    def success(self, message: str) -> None:
        self.console.print(f"{self._prefix()}[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"{self._prefix()}[red]✗[/red] {message}")

"""Rich output helpers shared by CLI commands."""

import sys

from loguru import logger
from rich.console import Console
from rich.table import Table

from ..core.composer import CompositionResult
from ..core.models import Hub, HubStatus, SourceStatus

console = Console()

STATUS_STYLES = {
    HubStatus.DRAFT: "dim",
    HubStatus.COMPOSING: "yellow",
    HubStatus.READY: "green",
    HubStatus.ERROR: "red",
    SourceStatus.PENDING: "dim",
    SourceStatus.PROCESSING: "yellow",
}


def configure_logging(verbose: bool = False) -> None:
    """Route loguru output to stderr (WARNING, or DEBUG with --verbose)."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_tip(message: str) -> None:
    console.print(f"[dim]💡 {message}[/dim]")


def _status(status: str) -> str:
    style = STATUS_STYLES.get(status, "green" if status == "ready" else "red")
    return f"[{style}]{status}[/{style}]"


def print_hubs(hubs: list[Hub]) -> None:
    """Print a table of hubs with their item counts."""
    table = Table(title="Hubs")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Folders", justify="right")
    table.add_column("Notes", justify="right")

    for hub in hubs:
        counts = hub.item_counts()
        name = f"★ {hub.name}" if hub.bookmarked else hub.name
        table.add_row(
            hub.id,
            name,
            _status(hub.status),
            str(counts["files"]),
            str(counts["folders"]),
            str(counts["notes"]),
        )
    console.print(table)


def print_hub(hub: Hub) -> None:
    """Print every item of one hub with its status."""
    console.print(f"[bold]{hub.name}[/bold] [dim]({hub.id})[/dim] {_status(hub.status)}")

    table = Table(show_header=True)
    table.add_column("Kind")
    table.add_column("ID", style="dim")
    table.add_column("Name / Path")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for file in hub.files:
        table.add_row("file", file.id, file.path, _status(file.status), file.error_message or "")
    for folder in hub.folders:
        table.add_row(
            "folder", folder.id, folder.path, _status(folder.status), folder.error_message or ""
        )
        for item in folder.items:
            table.add_row(
                "  file", item.id, item.path, _status(item.status), item.error_message or ""
            )
    for note in hub.notes:
        table.add_row(
            "note",
            note.id,
            note.title or "(untitled)",
            _status(note.status),
            note.error_message or "",
        )
    console.print(table)


def print_composition(result: CompositionResult) -> None:
    """Print the summary of a compose run."""
    if result.skipped:
        print_warning(result.message or "Composition skipped")
        return
    if result.aborted:
        print_warning(result.message or "Composition aborted")
        return

    table = Table(show_header=True)
    table.add_column("Kind")
    table.add_column("Indexed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row("files", str(result.files.success), str(result.files.error))
    table.add_row("folders", str(result.folders.success), str(result.folders.error))
    table.add_row("notes", str(result.notes.success), str(result.notes.error))
    console.print(table)

    if result.error_count:
        print_warning(result.message or "Composition finished with errors")
    else:
        print_success(result.message or "Composition complete")

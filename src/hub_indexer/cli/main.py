"""Command line entry point for Hub Indexer."""

from pathlib import Path

import typer

from .. import __version__
from .commands.compose import compose
from .commands.hub import hub_app
from .commands.index_notes import index_notes
from .commands.init import init
from .output import configure_logging, console

app = typer.Typer(
    name="hub-indexer",
    help="Index hubs of files, folders and notes into a semantic index",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("init")(init)
app.command("compose")(compose)
app.command("index-notes")(index_notes)
app.add_typer(hub_app, name="hub")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"hub-indexer {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace directory (defaults to the current directory)",
        file_okay=False,
        dir_okay=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace


if __name__ == "__main__":
    app()

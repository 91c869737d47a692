"""Compose command for Hub Indexer CLI."""

import asyncio
import contextlib
import signal

import typer
from loguru import logger

from ...core.composer import CompositionResult
from ...core.exceptions import HubIndexerError
from ...core.progress import ConsoleProgressSink
from ..context import get_workspace, load_components, load_config, resolve_hub
from ..output import console, print_composition, print_error, print_tip, print_warning


def compose(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    force: bool = typer.Option(
        True,
        "--force/--no-force",
        help="Replace existing vectors of every item",
    ),
) -> None:
    """🧩 Index every file, folder and note of a hub.

    [bold cyan]Examples:[/bold cyan]

    [green]Compose a hub:[/green]
        $ hub-indexer compose research

    [green]Keep vectors that already exist:[/green]
        $ hub-indexer compose research --no-force
    """
    try:
        config = load_config(get_workspace(ctx))
        print_tip("Press Ctrl+C to abort composition")
        result = asyncio.run(_run_compose(config, hub, force))
    except HubIndexerError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except Exception as e:
        logger.error(f"Composition failed: {e}")
        print_error(f"Composition failed: {e}")
        raise typer.Exit(1)

    print_composition(result)
    if result.skipped:
        raise typer.Exit(1)


async def _run_compose(config, hub_name: str, force: bool) -> CompositionResult:
    components = load_components(config, progress=ConsoleProgressSink(console))
    hub = resolve_hub(components.tree, hub_name)

    def request_abort() -> None:
        print_warning("Abort requested, finishing in-flight items...")
        components.composer.abort(hub.id)

    loop = asyncio.get_running_loop()
    # Signal handlers are not available on every platform (Windows)
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, request_abort)

    try:
        result = await components.composer.compose(hub.id, force_reindex=force)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        components.save_state()

    result.raise_for_failure()
    return result

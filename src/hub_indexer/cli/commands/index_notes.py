"""Notes corpus indexing command for Hub Indexer CLI."""

import asyncio
import contextlib
import signal
from pathlib import Path

import typer
from loguru import logger

from ...core.coordinator import StartStatus
from ...core.exceptions import HubIndexerError
from ...core.jobs import IndexingJob, JobStatus
from ...core.progress import ConsoleProgressSink
from ..context import get_workspace, load_components, load_config
from ..output import (
    console,
    print_error,
    print_info,
    print_success,
    print_warning,
)


def index_notes(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Re-embed every note, not only new ones"
    ),
    clear: bool = typer.Option(
        False, "--clear", help="Drop every stored note vector before indexing"
    ),
    notes_dir: Path | None = typer.Option(
        None,
        "--notes-dir",
        "-n",
        help="Notes directory (overrides the configured one)",
        exists=True,
        file_okay=False,
        dir_okay=True,
    ),
) -> None:
    """🗂️  Embed every note of the notes corpus that is not indexed yet."""
    try:
        config = load_config(get_workspace(ctx))
        if notes_dir is not None:
            config = config.model_copy(update={"notes_dir": notes_dir.resolve()})
        if config.notes_dir is None:
            print_error(
                "No notes directory configured. "
                "Use --notes-dir or 'hub-indexer init --notes-dir'."
            )
            raise typer.Exit(1)

        status, job = asyncio.run(_run_index_notes(config, force, clear))
    except HubIndexerError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except typer.Exit:
        raise
    except Exception as e:
        logger.error(f"Notes indexing failed: {e}")
        print_error(f"Notes indexing failed: {e}")
        raise typer.Exit(1)

    if status == StartStatus.SKIPPED:
        print_warning("Notes indexing already in progress")
    elif status == StartStatus.ERROR:
        print_error(job.message or "Notes indexing failed")
        raise typer.Exit(1)
    elif job is None:
        print_success("All notes are already indexed")
    elif job.status == JobStatus.ABORTED:
        print_warning(job.message or "Notes indexing aborted")
    else:
        print_success(
            f"Indexed {job.processed - job.error_count}/{job.total} notes"
            + (f" ({job.error_count} failed)" if job.error_count else "")
        )


async def _run_index_notes(
    config, force: bool, clear: bool = False
) -> tuple[StartStatus, IndexingJob | None]:
    components = load_components(config, progress=ConsoleProgressSink(console))
    coordinator = components.coordinator

    if clear:
        removed = await components.store.clear_notes_index()
        print_info(f"Cleared {removed} note vectors")

    if components.worker is not None:
        components.worker.start()
        await asyncio.sleep(0)

    loop = asyncio.get_running_loop()
    # Signal handlers are not available on every platform (Windows)
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, coordinator.stop_indexing)

    try:
        result = await coordinator.start_indexing(force_reindex=force)
        if result.status == StartStatus.STARTED:
            print_info(
                f"Indexing {result.total} notes ({result.already_indexed} already indexed)"
            )
            return result.status, await coordinator.wait()
        if result.status == StartStatus.ERROR:
            return result.status, IndexingJob(status=JobStatus.ERROR, message=result.message)
        if result.status == StartStatus.ABORTED:
            return result.status, IndexingJob(status=JobStatus.ABORTED, message=result.message)
        return result.status, None
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        if components.worker is not None:
            await components.worker.stop()

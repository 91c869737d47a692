"""Folder expansion and processing."""

from dataclasses import dataclass

from loguru import logger

from ..config.defaults import (
    DEFAULT_CONCURRENCY,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_WINDOW_DELAY_SECONDS,
)
from .cancellation import AbortToken, is_aborted
from .models import FileSource, FolderSource, SourceStatus
from .processor import ItemProcessor
from .progress import ProgressSink
from .scheduler import run_batches
from .source_tree import SourceTree
from .store import DurableStore


@dataclass
class FolderOutcome:
    """Result of processing one folder."""

    success: int
    error: int
    status: SourceStatus
    aborted: bool = False


class FolderWalker:
    """Expands a folder into file items and indexes them through the scheduler.

    Discovery is a single recursive listing from the store. Every discovered
    file is written into the folder's items with ``processing`` before any
    of them is dispatched, and the folder status is written once at the end:
    ``error`` if any item failed or the run was aborted, else ``ready``.
    """

    def __init__(
        self,
        tree: SourceTree,
        store: DurableStore,
        processor: ItemProcessor,
        concurrency: int = DEFAULT_CONCURRENCY,
        delay_seconds: float = DEFAULT_WINDOW_DELAY_SECONDS,
        progress: ProgressSink | None = None,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self.tree = tree
        self.store = store
        self.processor = processor
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.progress = progress
        self.progress_interval = progress_interval

    async def discover(self, hub_id: str, folder: FolderSource) -> list[FileSource]:
        """List the folder once and seed every file item with ``processing``.

        Existing items are reused (matched by id, then path) so their ids,
        and the vectors stored under them, survive recomposition.

        Raises:
            Exception: Whatever the store's listing raised
        """
        entries = await self.store.list_recursive(folder.path)
        items = []
        for entry in entries:
            if entry.kind != "file":
                continue
            candidate = FileSource.from_path(
                entry.path, entry.name, status=SourceStatus.PROCESSING
            )
            items.append(self.tree.upsert_folder_item(hub_id, folder.id, candidate))
        logger.debug(f"Discovered {len(items)} files in {folder.path}")
        return items

    async def process_folder(
        self,
        hub_id: str,
        folder: FolderSource,
        abort: AbortToken | None = None,
        *,
        force_reindex: bool = True,
        items: list[FileSource] | None = None,
    ) -> FolderOutcome:
        """Index every file below a folder.

        Args:
            hub_id: Owning hub
            folder: Folder to expand
            abort: Run's abort token
            force_reindex: Passed through to each vector upsert
            items: Items already seeded by :meth:`discover` (skips the listing)

        Returns:
            Item counts and the folder's final status
        """
        self.tree.set_item_status(hub_id, folder.id, SourceStatus.PROCESSING)

        if is_aborted(abort):
            return self._finish(hub_id, folder, 0, 0, aborted=True)

        if items is None:
            try:
                items = await self.discover(hub_id, folder)
            except Exception as e:
                logger.error(f"Failed to list folder {folder.path}: {e}")
                self.tree.set_item_status(
                    hub_id, folder.id, SourceStatus.ERROR, f"Failed to list folder: {e}"
                )
                return FolderOutcome(0, 0, SourceStatus.ERROR)

        async def process(item: FileSource):
            return await self.processor.process_file(
                hub_id,
                item,
                abort,
                parent_folder_id=folder.id,
                force_reindex=force_reindex,
            )

        result = await run_batches(
            items,
            process,
            concurrency=self.concurrency,
            abort=abort,
            delay_seconds=self.delay_seconds,
            progress=self.progress,
            progress_interval=self.progress_interval,
            label=f"files in {folder.path}",
        )
        return self._finish(
            hub_id,
            folder,
            result.success,
            result.error,
            aborted=result.aborted or is_aborted(abort),
        )

    def _finish(
        self,
        hub_id: str,
        folder: FolderSource,
        success: int,
        error: int,
        aborted: bool,
    ) -> FolderOutcome:
        status = SourceStatus.ERROR if aborted or error else SourceStatus.READY
        message = None
        if aborted:
            message = "Aborted"
        elif error:
            message = f"{error} file(s) failed"
        self.tree.set_item_status(hub_id, folder.id, status, message)
        logger.info(
            f"Folder {folder.path}: {success} indexed, {error} failed"
            f"{' (aborted)' if aborted else ''}"
        )
        return FolderOutcome(success, error, status, aborted)

"""Hub composition: one end-to-end indexing run over a hub.

Order of work:

1. hub -> ``composing``, every file, folder and note -> ``processing``,
   folder items seeded from one recursive listing per folder
2. standalone files through the batch scheduler
3. folders one after another through the folder walker
4. notes through the batch scheduler

An aborted run leaves the hub in ``draft``; any other run ends ``ready``
whatever the item outcomes were, and item errors are reported through the
run summary. Only one composition per hub runs at a time.
"""

from loguru import logger
from pydantic import BaseModel, Field

from ..config.defaults import (
    DEFAULT_CONCURRENCY,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_WINDOW_DELAY_SECONDS,
)
from .cancellation import AbortToken, is_aborted
from .exceptions import IndexingError
from .folder_walker import FolderWalker
from .jobs import JobRegistry, JobStatus, hub_key
from .models import FileSource, HubStatus, NoteSource, SourceStatus
from .processor import ItemProcessor
from .progress import ProgressSink, notify
from .scheduler import run_batches
from .source_tree import SourceTree


class Counts(BaseModel):
    success: int = 0
    error: int = 0


class CompositionResult(BaseModel):
    """Summary of one compose request."""

    hub_id: str
    skipped: bool = False
    aborted: bool = False
    hub_status: HubStatus | None = None
    files: Counts = Field(default_factory=Counts)
    folders: Counts = Field(default_factory=Counts)
    notes: Counts = Field(default_factory=Counts)
    failed: bool = False
    message: str | None = None

    @property
    def error_count(self) -> int:
        return self.files.error + self.folders.error + self.notes.error

    def raise_for_failure(self) -> None:
        """Raise ``IndexingError`` if the run itself broke down.

        Item errors are part of a normal run and never raise here.
        """
        if self.failed:
            raise IndexingError(
                self.message or "Composition failed", context={"hub_id": self.hub_id}
            )


class Composer:
    """Runs compositions of hubs held in a source tree."""

    def __init__(
        self,
        tree: SourceTree,
        processor: ItemProcessor,
        walker: FolderWalker,
        registry: JobRegistry,
        concurrency: int = DEFAULT_CONCURRENCY,
        delay_seconds: float = DEFAULT_WINDOW_DELAY_SECONDS,
        progress: ProgressSink | None = None,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self.tree = tree
        self.processor = processor
        self.walker = walker
        self.registry = registry
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.progress = progress
        self.progress_interval = progress_interval

    def is_composing(self, hub_id: str) -> bool:
        return self.tree.is_composing(hub_id) or self.registry.get(hub_key(hub_id)) is not None

    def abort(self, hub_id: str) -> bool:
        """Request the running composition of a hub to stop."""
        return self.registry.abort(hub_key(hub_id))

    async def compose(self, hub_id: str, *, force_reindex: bool = True) -> CompositionResult:
        """Index every file, folder and note of a hub.

        Args:
            hub_id: Hub to compose
            force_reindex: Replace existing vectors of every item

        Returns:
            Per-kind counts and the hub's final status; ``skipped`` when the
            hub is already being composed

        Raises:
            HubNotFoundError: If the hub does not exist
        """
        hub = self.tree.get_hub(hub_id)
        key = hub_key(hub_id)

        if self.is_composing(hub_id):
            logger.info(f"Hub {hub.name} is already composing, skipping")
            return CompositionResult(
                hub_id=hub_id,
                skipped=True,
                hub_status=hub.status,
                message="Composition already in progress",
            )

        entry = self.registry.acquire(key)
        if entry is None:
            return CompositionResult(
                hub_id=hub_id,
                skipped=True,
                hub_status=hub.status,
                message="Composition already in progress",
            )
        token = entry.token
        result = CompositionResult(hub_id=hub_id)

        try:
            await self._compose(hub_id, token, force_reindex, result)
        except Exception as e:
            logger.error(f"Composition of hub {hub.name} failed: {e}")
            if self.tree.has_hub(hub_id):
                self.tree.set_hub_status(hub_id, HubStatus.DRAFT)
            result.hub_status = HubStatus.DRAFT
            result.failed = True
            result.message = f"Failed to compose hub: {e}"
            self.registry.update(key, status=JobStatus.ERROR, message=result.message)
            notify(self.progress, "error", result.message)
        finally:
            self.registry.release(key)

        return result

    async def _compose(
        self,
        hub_id: str,
        token: AbortToken,
        force_reindex: bool,
        result: CompositionResult,
    ) -> None:
        key = hub_key(hub_id)
        self.tree.set_hub_status(hub_id, HubStatus.COMPOSING, cascade=True)
        hub = self.tree.get_hub(hub_id)
        counts = hub.item_counts()
        logger.info(
            f"Composing hub {hub.name}: {counts['files']} files, "
            f"{counts['folders']} folders, {counts['notes']} notes"
        )

        seeded: dict[str, list[FileSource] | None] = {}
        for folder in hub.folders:
            if is_aborted(token):
                break
            try:
                seeded[folder.id] = await self.walker.discover(hub_id, folder)
            except Exception as e:
                logger.warning(f"Failed to list folder {folder.path}: {e}")
                seeded[folder.id] = None

        hub = self.tree.get_hub(hub_id)
        total = len(hub.files) + sum(len(f.items) for f in hub.folders) + len(hub.notes)
        self.registry.update(key, total=total, status=JobStatus.PROGRESS)

        if hub.files and not is_aborted(token):

            async def process_file(file: FileSource):
                return await self.processor.process_file(
                    hub_id, file, token, force_reindex=force_reindex
                )

            files = await self._batches(hub.files, process_file, token, "files")
            result.files = Counts(success=files.success, error=files.error)

        for folder in hub.folders:
            if is_aborted(token):
                break
            outcome = await self.walker.process_folder(
                hub_id,
                folder,
                token,
                force_reindex=force_reindex,
                items=seeded.get(folder.id),
            )
            if outcome.status == SourceStatus.READY:
                result.folders.success += 1
            else:
                result.folders.error += 1

        if hub.notes and not is_aborted(token):

            async def process_note(note: NoteSource):
                return await self.processor.process_note(
                    hub_id, note, token, force_reindex=force_reindex
                )

            notes = await self._batches(hub.notes, process_note, token, "notes")
            result.notes = Counts(success=notes.success, error=notes.error)

        if is_aborted(token):
            self.tree.set_hub_status(hub_id, HubStatus.DRAFT)
            result.aborted = True
            result.hub_status = HubStatus.DRAFT
            result.message = f"Composition of {hub.name} aborted"
            self.registry.update(key, status=JobStatus.ABORTED, message=result.message)
            logger.info(result.message)
            notify(self.progress, "info", result.message)
            return

        self.tree.set_hub_status(hub_id, HubStatus.READY)
        result.hub_status = HubStatus.READY
        result.message = self._summary(hub.name, result)
        self.registry.update(key, status=JobStatus.COMPLETED, message=result.message)
        logger.info(result.message)
        notify(self.progress, "error" if result.error_count else "success", result.message)

    async def _batches(self, items, process, token: AbortToken, label: str):
        return await run_batches(
            items,
            process,
            concurrency=self.concurrency,
            abort=token,
            delay_seconds=self.delay_seconds,
            progress=self.progress,
            progress_interval=self.progress_interval,
            label=label,
        )

    @staticmethod
    def _summary(name: str, result: CompositionResult) -> str:
        parts = [
            f"{result.files.success} files",
            f"{result.folders.success} folders",
            f"{result.notes.success} notes",
        ]
        message = f"Composed {name}: {', '.join(parts)} indexed"
        if result.error_count:
            message += (
                f" ({result.files.error} files, {result.folders.error} folders, "
                f"{result.notes.error} notes failed)"
            )
        return message

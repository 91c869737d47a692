"""Corpus-wide notes indexing coordinator.

Keeps the embeddings of the whole notes corpus current. One coordinator
serves one corpus; its run is registered in the ``JobRegistry`` under
``corpus:<name>`` so a second start request while a run is active is a
no-op.

Job lifecycle::

    idle -> started -> progress* -> completed | error | aborted -> idle

Every transition is published on the ``indexing-status`` topic. The whole
job, discovery included, is bounded by one wall-clock safety timeout. A
discovery that overruns it ends the job ``aborted`` at once. A run that
overruns it gets its abort token set and is marked ``aborted``; it then has a
short grace period to stop at its next checkpoint before it is cancelled.
The registry entry is released afterwards, which clears the token for the
next run.

Embeddings are computed locally, or (``remote_embeddings=True``) requested
from another context by publishing ``NoteEmbeddingRequest`` events on
``note-needs-embedding``; the answers arrive through ``submit_embedding()``
or on the ``note-embedding-result`` topic.
"""

import asyncio
import contextlib
from enum import StrEnum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from ..config.defaults import (
    DEFAULT_ABORT_GRACE_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_CORPUS_NAME,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_REMOTE_EMBEDDING_TIMEOUT_SECONDS,
    DEFAULT_SAFETY_TIMEOUT_SECONDS,
    DEFAULT_WINDOW_DELAY_SECONDS,
)
from .cancellation import is_aborted
from .embeddings import EmbeddingProvider
from .events import (
    INDEXING_STATUS_TOPIC,
    NOTE_EMBEDDING_RESULT_TOPIC,
    NOTE_NEEDS_EMBEDDING_TOPIC,
    EventBus,
    IndexingStatusEvent,
    NoteEmbeddingRequest,
    NoteEmbeddingResponse,
)
from .exceptions import FailureKind
from .jobs import (
    TERMINAL_STATUSES,
    IndexingJob,
    JobEntry,
    JobRegistry,
    JobStatus,
    corpus_key,
)
from .models import ItemOutcome, NoteRef
from .progress import ProgressSink, notify
from .scheduler import run_batches
from .store import DurableStore


class StartStatus(StrEnum):
    STARTED = "started"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


class StartResult(BaseModel):
    """Answer to a start request."""

    status: StartStatus
    total: int = 0
    already_indexed: int = 0
    message: str | None = None


class IndexingCoordinator:
    """Background indexing job for one notes corpus."""

    def __init__(
        self,
        store: DurableStore,
        registry: JobRegistry,
        bus: EventBus,
        embedder: EmbeddingProvider | None = None,
        *,
        corpus: str = DEFAULT_CORPUS_NAME,
        remote_embeddings: bool = False,
        concurrency: int = DEFAULT_CONCURRENCY,
        delay_seconds: float = DEFAULT_WINDOW_DELAY_SECONDS,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        safety_timeout_seconds: float = DEFAULT_SAFETY_TIMEOUT_SECONDS,
        abort_grace_seconds: float = DEFAULT_ABORT_GRACE_SECONDS,
        remote_embedding_timeout_seconds: float = DEFAULT_REMOTE_EMBEDDING_TIMEOUT_SECONDS,
        progress: ProgressSink | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            store: Durable store holding the notes corpus
            registry: Shared job registry
            bus: Event bus for status events and remote embedding requests
            embedder: Local embedding backend (required unless remote_embeddings)
            corpus: Corpus name used as registry key
            remote_embeddings: Request embeddings over the bus instead of locally
            concurrency: Notes per scheduler window
            delay_seconds: Pause between windows
            progress_interval: Progress notification interval
            safety_timeout_seconds: Wall-clock limit of one run
            abort_grace_seconds: Time an aborted run gets to stop on its own
            remote_embedding_timeout_seconds: Wait limit for one remote embedding
            progress: Optional progress sink
        """
        if embedder is None and not remote_embeddings:
            raise ValueError("A local embedder is required unless remote_embeddings is set")
        self.store = store
        self.registry = registry
        self.bus = bus
        self.embedder = embedder
        self.corpus = corpus
        self.remote_embeddings = remote_embeddings
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.progress_interval = progress_interval
        self.safety_timeout_seconds = safety_timeout_seconds
        self.abort_grace_seconds = abort_grace_seconds
        self.remote_embedding_timeout_seconds = remote_embedding_timeout_seconds
        self.progress = progress

        self._task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def key(self) -> str:
        return corpus_key(self.corpus)

    @property
    def status(self) -> IndexingJob:
        """Current job counters (``idle`` between runs)."""
        return self.registry.snapshot(self.key)

    @property
    def is_indexing(self) -> bool:
        return self.registry.is_active(self.key)

    # ── Public API ──────────────────────────────────────────────────────

    async def start_indexing(self, force_reindex: bool = False) -> StartResult:
        """Discover notes needing an embedding and index them in the background.

        Args:
            force_reindex: Re-embed every note, not only new or changed ones

        Returns:
            ``skipped`` if a run is active, ``completed`` if nothing needs
            indexing, ``error`` if discovery failed, ``aborted`` if discovery
            timed out or the run was stopped meanwhile, else ``started``
        """
        if self.is_indexing:
            logger.info(f"Indexing of {self.corpus} already in progress, skipping")
            return StartResult(status=StartStatus.SKIPPED, message="Indexing already in progress")

        entry = self.registry.acquire(self.key)
        if entry is None:
            return StartResult(status=StartStatus.SKIPPED, message="Indexing already in progress")
        self._idle.clear()
        self._publish(entry.job)
        deadline = asyncio.get_running_loop().time() + self.safety_timeout_seconds

        try:
            plan = await asyncio.wait_for(
                self.store.get_notes_needing_indexing(force_reindex),
                timeout=self.safety_timeout_seconds,
            )
        except TimeoutError:
            message = f"Timed out after {self.safety_timeout_seconds}s"
            logger.warning(
                f"Discovery of {self.corpus} notes exceeded "
                f"{self.safety_timeout_seconds}s, aborting"
            )
            entry.token.set()
            self._finish(entry, JobStatus.ABORTED, message)
            notify(self.progress, "error", "Indexing timed out and was aborted")
            return StartResult(status=StartStatus.ABORTED, message=message)
        except asyncio.CancelledError:
            self._finish(entry, JobStatus.ABORTED, "Cancelled during discovery")
            raise
        except Exception as e:
            logger.error(f"Failed to discover notes needing indexing: {e}")
            self._finish(entry, JobStatus.ERROR, f"Discovery failed: {e}")
            notify(self.progress, "error", f"Failed to check notes: {e}")
            return StartResult(status=StartStatus.ERROR, message=str(e))

        if is_aborted(entry.token):
            message = "Aborted before indexing started"
            logger.info(f"Indexing of {self.corpus} stopped during discovery")
            self._finish(entry, JobStatus.ABORTED, message)
            return StartResult(status=StartStatus.ABORTED, message=message)

        already = len(plan.already_indexed)
        if not plan.needs_indexing:
            logger.info(f"All {plan.total} notes already indexed")
            self._finish(entry, JobStatus.COMPLETED, "All notes already indexed")
            return StartResult(
                status=StartStatus.COMPLETED, total=plan.total, already_indexed=already
            )

        total = len(plan.needs_indexing)
        self._update(entry, total=total, message=f"Indexing {total} notes")
        logger.info(f"Indexing {total} of {plan.total} notes ({already} already indexed)")
        notify(self.progress, "info", f"Indexing {total} notes...")

        self._task = asyncio.create_task(
            self._supervise(entry, plan.needs_indexing, deadline)
        )
        return StartResult(status=StartStatus.STARTED, total=total, already_indexed=already)

    def stop_indexing(self) -> bool:
        """Set the abort token of the active run (if any)."""
        return self.registry.abort(self.key)

    async def wait(self) -> IndexingJob | None:
        """Wait for the background run to end; returns its final counters."""
        task = self._task
        if task is None:
            return None
        with contextlib.suppress(asyncio.CancelledError):
            return await task

    async def change_root(self, new_root: Path, force_reindex: bool = False) -> StartResult:
        """Point the corpus at another directory and restart discovery.

        An active run (or a discovery still in flight) is aborted and allowed
        to finish its current step before the root changes.
        """
        if self.registry.get(self.key) is not None:
            logger.info(f"Notes root changing to {new_root}, aborting current run")
            self.stop_indexing()
            await self._idle.wait()
            if self.abort_grace_seconds > 0:
                await asyncio.sleep(self.abort_grace_seconds)

        self.store.set_notes_root(new_root)
        return await self.start_indexing(force_reindex=force_reindex)

    def submit_embedding(self, response: NoteEmbeddingResponse) -> bool:
        """Resolve a pending remote embedding request.

        Returns:
            False if no request with that id is waiting (late or unknown)
        """
        future = self._pending.get(response.request_id)
        if future is None or future.done():
            logger.debug(f"Ignoring embedding response for unknown request {response.request_id}")
            return False
        future.set_result(response)
        return True

    # ── Run ─────────────────────────────────────────────────────────────

    async def _supervise(
        self, entry: JobEntry, notes: list[NoteRef], deadline: float
    ) -> IndexingJob:
        listener = None
        if self.remote_embeddings:
            # Created first so it subscribes before the first request goes out
            listener = asyncio.create_task(
                self.bus.listen(NOTE_EMBEDDING_RESULT_TOPIC, self._on_embedding_result)
            )
        run = asyncio.create_task(self._run(entry, notes))

        try:
            remaining = max(deadline - asyncio.get_running_loop().time(), 0)
            await asyncio.wait_for(asyncio.shield(run), timeout=remaining)
        except TimeoutError:
            logger.warning(
                f"Indexing of {self.corpus} exceeded {self.safety_timeout_seconds}s, aborting"
            )
            entry.token.set()
            self._update(
                entry,
                status=JobStatus.ABORTED,
                message=f"Timed out after {self.safety_timeout_seconds}s",
            )
            notify(self.progress, "error", "Indexing timed out and was aborted")

            done, _ = await asyncio.wait({run}, timeout=self.abort_grace_seconds)
            if not done:
                run.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await run
        except asyncio.CancelledError:
            run.cancel()
            raise
        finally:
            if listener is not None:
                listener.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await listener
            for future in self._pending.values():
                future.cancel()
            self._pending.clear()
            final = self.registry.snapshot(self.key)
            self._release(entry)

        return final

    async def _run(self, entry: JobEntry, notes: list[NoteRef]) -> None:
        token = entry.token

        def on_outcome(note: NoteRef, outcome) -> None:
            job = entry.job
            failed = not isinstance(outcome, ItemOutcome) or not outcome.success
            if job.status in TERMINAL_STATUSES:
                return
            self._update(
                entry,
                status=JobStatus.PROGRESS,
                processed=job.processed + 1,
                error_count=job.error_count + (1 if failed else 0),
            )

        async def process(note: NoteRef) -> ItemOutcome:
            return await self._index_note(note, token)

        try:
            result = await run_batches(
                notes,
                process,
                concurrency=self.concurrency,
                abort=token,
                delay_seconds=self.delay_seconds,
                progress=self.progress,
                progress_interval=self.progress_interval,
                label="notes",
                on_outcome=on_outcome,
            )
        except Exception as e:
            logger.error(f"Indexing of {self.corpus} failed: {e}")
            self._set_terminal(entry, JobStatus.ERROR, str(e))
            notify(self.progress, "error", f"Indexing failed: {e}")
            return

        if result.aborted or is_aborted(token):
            self._set_terminal(
                entry, JobStatus.ABORTED, f"Aborted after {result.processed} notes"
            )
            notify(self.progress, "info", f"Indexing aborted after {result.processed} notes")
            return

        self._set_terminal(
            entry,
            JobStatus.COMPLETED,
            f"Indexed {result.success} notes, {result.error} failed",
        )
        if result.error:
            notify(
                self.progress,
                "error",
                f"Indexed {result.success} notes, {result.error} failed",
            )
        else:
            notify(self.progress, "success", f"Indexed {result.success} notes")

    async def _index_note(self, note: NoteRef, token) -> ItemOutcome:
        if is_aborted(token):
            return ItemOutcome.failed(note.id, FailureKind.CANCELLED)

        if self.remote_embeddings:
            vector = await self._request_remote_embedding(note)
        else:
            try:
                content = await self.store.get_content(note.path)
            except Exception as e:
                logger.warning(f"Failed to read note {note.path}: {e}")
                return ItemOutcome.failed(note.id, FailureKind.CONTENT_UNAVAILABLE, str(e))
            if not content or not content.strip():
                return ItemOutcome.failed(
                    note.id, FailureKind.CONTENT_UNAVAILABLE, "No content found"
                )
            if is_aborted(token):
                return ItemOutcome.failed(note.id, FailureKind.CANCELLED)
            vector = await self.embedder.embed(content)

        if vector is None:
            return ItemOutcome.failed(
                note.id, FailureKind.EMBEDDING_FAILED, "Failed to generate embedding"
            )
        if is_aborted(token):
            return ItemOutcome.failed(note.id, FailureKind.CANCELLED)

        try:
            stored = await self.store.mark_indexed(note.id, vector)
        except Exception as e:
            logger.warning(f"Failed to store embedding for {note.id}: {e}")
            return ItemOutcome.failed(note.id, FailureKind.PERSISTENCE_FAILED, str(e))
        if not stored:
            return ItemOutcome.failed(note.id, FailureKind.PERSISTENCE_FAILED)

        logger.debug(f"Indexed note {note.id}")
        return ItemOutcome.ok(note.id)

    async def _request_remote_embedding(self, note: NoteRef) -> list[float] | None:
        request = NoteEmbeddingRequest(note_id=note.id, path=note.path, title=note.title)
        future = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = future

        try:
            if self.bus.publish(NOTE_NEEDS_EMBEDDING_TOPIC, request) == 0:
                logger.warning(f"No embedding listener for note {note.id}")
                return None
            response = await asyncio.wait_for(
                future, timeout=self.remote_embedding_timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                f"Remote embedding for {note.id} timed out after "
                f"{self.remote_embedding_timeout_seconds}s"
            )
            return None
        finally:
            self._pending.pop(request.request_id, None)

        if response.error:
            logger.warning(f"Remote embedding failed for {note.id}: {response.error}")
        return response.vector

    async def _on_embedding_result(self, response: NoteEmbeddingResponse) -> None:
        self.submit_embedding(response)

    # ── Job bookkeeping ─────────────────────────────────────────────────

    def _publish(self, job: IndexingJob) -> None:
        self.bus.publish(
            INDEXING_STATUS_TOPIC,
            IndexingStatusEvent(corpus=self.corpus, **job.model_dump()),
        )

    def _update(self, entry: JobEntry, **fields) -> None:
        self._publish(self.registry.update(entry.key, **fields))

    def _set_terminal(self, entry: JobEntry, status: JobStatus, message: str) -> None:
        # A timeout may already have marked the job aborted
        if entry.job.status in TERMINAL_STATUSES:
            return
        self._update(entry, status=status, message=message)

    def _release(self, entry: JobEntry) -> None:
        self.registry.release(entry.key)
        self._idle.set()
        self._publish(IndexingJob(status=JobStatus.IDLE))

    def _finish(self, entry: JobEntry, status: JobStatus, message: str) -> None:
        self._update(entry, status=status, message=message)
        self._release(entry)

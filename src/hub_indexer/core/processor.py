"""Per-item indexing pipeline.

For one file (or note) of a hub:

1. status -> ``processing``
2. abort check
3. fetch raw content from the store (files only); empty or failed -> ``error``
4. abort check
5. embed; no vector -> ``error``
6. abort check
7. persist the vector; with knowledge-graph indexing enabled also run the
   structured extraction and persist the graph record
8. ``ready`` on success, ``error`` on any persistence failure

An abort observed at a checkpoint returns a ``cancelled`` outcome without
touching the item again, so it keeps its last written status. Every other
failure writes ``error`` with a message; nothing here raises to the caller.
"""

from collections.abc import Awaitable, Callable

from loguru import logger

from .cancellation import AbortToken, is_aborted
from .embeddings import EmbeddingProvider
from .exceptions import (
    ExtractionCancelledError,
    ExtractionFailedError,
    FailureKind,
)
from .extraction import StructuredExtractor
from .models import FileSource, ItemOutcome, NoteSource, SourceStatus
from .source_tree import SourceTree
from .store import DurableStore


class ItemProcessor:
    """Runs the fetch -> embed -> extract -> persist pipeline for one item."""

    def __init__(
        self,
        tree: SourceTree,
        store: DurableStore,
        embedder: EmbeddingProvider,
        extractor: StructuredExtractor | None = None,
        knowledge_graph: bool = False,
    ) -> None:
        """Initialize processor.

        Args:
            tree: Source tree receiving status writes
            store: Durable store for content, vectors and graph records
            embedder: Embedding backend
            extractor: Structured extractor (required when ``knowledge_graph``)
            knowledge_graph: Also extract entities and write graph records
        """
        if knowledge_graph and extractor is None:
            raise ValueError("knowledge_graph indexing requires an extractor")
        self.tree = tree
        self.store = store
        self.embedder = embedder
        self.extractor = extractor
        self.knowledge_graph = knowledge_graph

    async def process_file(
        self,
        hub_id: str,
        file: FileSource,
        abort: AbortToken | None = None,
        *,
        parent_folder_id: str | None = None,
        force_reindex: bool = True,
    ) -> ItemOutcome:
        """Index one file of a hub (standalone or a folder item)."""
        where = f" in folder {parent_folder_id}" if parent_folder_id else ""
        label = f"file {file.name}{where}"

        async def load() -> str:
            return await self.store.get_content(file.path)

        return await self._run(hub_id, file.id, label, file.path, load, abort, force_reindex)

    async def process_note(
        self,
        hub_id: str,
        note: NoteSource,
        abort: AbortToken | None = None,
        *,
        force_reindex: bool = True,
    ) -> ItemOutcome:
        """Index one note of a hub; its text is embedded directly."""

        async def load() -> str:
            return note.text

        label = f"note {note.title or note.id}"
        return await self._run(
            hub_id, note.id, label, f"note:{note.id}", load, abort, force_reindex
        )

    async def _run(
        self,
        hub_id: str,
        item_id: str,
        label: str,
        path: str,
        load: Callable[[], Awaitable[str]],
        abort: AbortToken | None,
        force_reindex: bool,
    ) -> ItemOutcome:
        self.tree.set_item_status(hub_id, item_id, SourceStatus.PROCESSING)

        if is_aborted(abort):
            return self._cancelled(item_id, label)

        try:
            content = await load()
        except Exception as e:
            return self._fail(
                hub_id, item_id, FailureKind.CONTENT_UNAVAILABLE, f"Failed to read content: {e}"
            )
        if not content or not content.strip():
            return self._fail(
                hub_id, item_id, FailureKind.CONTENT_UNAVAILABLE, "No content found"
            )
        logger.debug(f"Fetched {len(content)} characters for {label}")

        if is_aborted(abort):
            return self._cancelled(item_id, label)

        vector = await self.embedder.embed(content)
        if vector is None:
            return self._fail(
                hub_id, item_id, FailureKind.EMBEDDING_FAILED, "Failed to generate embedding"
            )
        logger.debug(f"Embedded {label} ({len(vector)} dimensions)")

        if is_aborted(abort):
            return self._cancelled(item_id, label)

        try:
            stored = await self.store.upsert_vector(hub_id, item_id, vector, force_reindex)
        except Exception as e:
            return self._fail(
                hub_id, item_id, FailureKind.PERSISTENCE_FAILED, f"Failed to index: {e}"
            )
        if not stored:
            return self._fail(
                hub_id, item_id, FailureKind.PERSISTENCE_FAILED, "Failed to index"
            )

        if self.knowledge_graph:
            try:
                extraction = await self.extractor.extract(item_id, content, abort)
            except ExtractionCancelledError:
                return self._cancelled(item_id, label)
            except ExtractionFailedError as e:
                return self._fail(hub_id, item_id, FailureKind.EXTRACTION_FAILED, str(e))
            except Exception as e:
                return self._fail(
                    hub_id,
                    item_id,
                    FailureKind.EXTRACTION_FAILED,
                    f"Failed to extract entities: {e}",
                )

            try:
                stored = await self.store.upsert_graph(
                    extraction, item_id, vector, hub_id, path
                )
            except Exception as e:
                return self._fail(
                    hub_id,
                    item_id,
                    FailureKind.PERSISTENCE_FAILED,
                    f"Failed to index knowledge graph: {e}",
                )
            if not stored:
                return self._fail(
                    hub_id,
                    item_id,
                    FailureKind.PERSISTENCE_FAILED,
                    "Failed to index knowledge graph",
                )
            logger.debug(
                f"Indexed {len(extraction.entities)} entities for {label}"
            )

        self.tree.set_item_status(hub_id, item_id, SourceStatus.READY)
        logger.info(f"Indexed {label}")
        return ItemOutcome.ok(item_id)

    def _fail(
        self, hub_id: str, item_id: str, failure: FailureKind, message: str
    ) -> ItemOutcome:
        logger.warning(f"Item {item_id} failed ({failure}): {message}")
        self.tree.set_item_status(hub_id, item_id, SourceStatus.ERROR, message)
        return ItemOutcome.failed(item_id, failure, message)

    def _cancelled(self, item_id: str, label: str) -> ItemOutcome:
        logger.info(f"Abort requested, stopping {label}")
        return ItemOutcome.failed(item_id, FailureKind.CANCELLED, "Cancelled")

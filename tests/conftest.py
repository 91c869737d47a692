"""Shared fixtures and fakes for hub-indexer tests."""

import asyncio
from pathlib import Path

import pytest

from hub_indexer.core.embeddings import EmbeddingProvider
from hub_indexer.core.exceptions import StoreError
from hub_indexer.core.models import FolderEntry, NoteRef, NotesIndexPlan
from hub_indexer.core.source_tree import SourceTree


class FakeEmbedder(EmbeddingProvider):
    """Deterministic embedder that records calls and concurrency."""

    name = "fake"

    def __init__(self, fail_on: set[str] | None = None, delay: float = 0.0) -> None:
        super().__init__("fake-model")
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def _embed(self, text: str) -> list[float]:
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if text in self.fail_on:
                raise RuntimeError(f"cannot embed {text!r}")
            return [float(len(text)), 1.0]
        finally:
            self.active -= 1


class FakeStore:
    """In-memory ``DurableStore`` with switchable failures."""

    def __init__(
        self,
        contents: dict[str, str] | None = None,
        listings: dict[str, list[FolderEntry]] | None = None,
    ) -> None:
        self.contents = dict(contents or {})
        self.listings = dict(listings or {})
        self.vectors: dict[tuple[str, str], list[float]] = {}
        self.graph: dict[str, dict] = {}
        self.indexed: dict[str, list[float]] = {}
        self.notes: list[NoteRef] = []
        self.notes_root: Path | None = None
        self.fail_upsert: set[str] = set()
        self.fail_listing: set[str] = set()
        self.fail_discovery = False
        self.deleted_vectors: list[tuple[str, str]] = []
        self.deleted_graph: list[str] = []
        self.list_calls: list[str] = []
        self.content_delay = 0.0
        self.discovery_delay = 0.0

    async def get_content(self, path: str) -> str:
        if self.content_delay:
            await asyncio.sleep(self.content_delay)
        if path not in self.contents:
            raise StoreError(f"No such file: {path}")
        return self.contents[path]

    async def list_recursive(self, path: str) -> list[FolderEntry]:
        self.list_calls.append(path)
        if path in self.fail_listing:
            raise StoreError(f"Cannot list {path}")
        return list(self.listings.get(path, []))

    async def upsert_vector(self, hub_id, item_id, vector, force_reindex) -> bool:
        if item_id in self.fail_upsert:
            return False
        if (hub_id, item_id) in self.vectors and not force_reindex:
            return True
        self.vectors[(hub_id, item_id)] = vector
        return True

    async def upsert_graph(self, extraction, item_id, vector, hub_id, path) -> bool:
        self.graph[item_id] = {"hub_id": hub_id, "path": path, "extraction": extraction}
        return True

    async def delete_vectors(self, hub_id, item_id) -> bool:
        self.deleted_vectors.append((hub_id, item_id))
        return self.vectors.pop((hub_id, item_id), None) is not None

    async def delete_graph_node(self, item_id) -> bool:
        self.deleted_graph.append(item_id)
        return self.graph.pop(item_id, None) is not None

    async def get_notes_needing_indexing(self, force_reindex: bool = False) -> NotesIndexPlan:
        if self.discovery_delay:
            await asyncio.sleep(self.discovery_delay)
        if self.fail_discovery:
            raise StoreError("Notes corpus unavailable")
        plan = NotesIndexPlan(total=len(self.notes))
        for note in self.notes:
            if note.id in self.indexed and not force_reindex:
                plan.already_indexed.append(note.id)
            else:
                plan.needs_indexing.append(note)
        return plan

    async def mark_indexed(self, note_id, vector) -> bool:
        self.indexed[note_id] = vector
        return True

    async def delete_note_vectors(self, note_id) -> bool:
        return self.indexed.pop(note_id, None) is not None

    async def clear_notes_index(self) -> int:
        count = len(self.indexed)
        self.indexed.clear()
        return count

    def set_notes_root(self, path: Path) -> None:
        self.notes_root = path

    def add_note(self, note_id: str, content: str) -> NoteRef:
        """Register a corpus note whose content lives at ``notes/<id>``."""
        note = NoteRef(id=note_id, path=f"notes/{note_id}", title=note_id)
        self.notes.append(note)
        self.contents[note.path] = content
        return note


class RecordingSink:
    """Progress sink that keeps every notification."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def make_embedder():
    """Factory for embedders with custom failures or latency."""
    return FakeEmbedder


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def tree(fake_store):
    return SourceTree(store=fake_store)

"""Durable store contract used by the pipeline.

The store owns raw content, vector records and graph records. Its transport
(local files, RPC, HTTP...) is an implementation detail. The pipeline treats
a falsy return value *or* a raised exception from any of these calls as a
failure and turns it into a status write; nothing here may bypass the item
bookkeeping.
"""

from pathlib import Path
from typing import Protocol, runtime_checkable

from .extraction import DocumentExtraction
from .models import FolderEntry, NotesIndexPlan


@runtime_checkable
class DurableStore(Protocol):
    async def get_content(self, path: str) -> str:
        """Raw text content of a file or note."""
        ...

    async def list_recursive(self, path: str) -> list[FolderEntry]:
        """Every descendant of ``path`` in one listing (files and folders)."""
        ...

    async def upsert_vector(
        self, hub_id: str, item_id: str, vector: list[float], force_reindex: bool
    ) -> bool: ...

    async def upsert_graph(
        self,
        extraction: DocumentExtraction,
        item_id: str,
        vector: list[float],
        hub_id: str,
        path: str,
    ) -> bool: ...

    async def delete_vectors(self, hub_id: str, item_id: str) -> bool: ...

    async def delete_graph_node(self, item_id: str) -> bool: ...

    async def get_notes_needing_indexing(
        self, force_reindex: bool = False
    ) -> NotesIndexPlan:
        """Partition the notes corpus without computing any embedding."""
        ...

    async def mark_indexed(self, note_id: str, vector: list[float]) -> bool: ...

    async def delete_note_vectors(self, note_id: str) -> bool:
        """Drop the stored embedding of one note (False if it had none)."""
        ...

    async def clear_notes_index(self) -> int:
        """Drop every stored note embedding; returns how many were dropped."""
        ...

    def set_notes_root(self, path: Path) -> None:
        """Point the notes corpus at another directory."""
        ...

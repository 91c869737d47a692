"""File-system durable store.

Reads content straight from disk and keeps derived records as JSON
documents under the index directory:

- ``vectors.json``: ``{hub_id: {item_id: vector}}``
- ``graph.json``: ``{item_id: {hub_id, path, extraction}}``
- ``notes.json``: ``{note_id: vector}`` for the notes corpus

It is a bookkeeping store for the CLI and tests, not a similarity index.
"""

import asyncio
import os
from pathlib import Path
from typing import Any

import aiofiles
import orjson
from loguru import logger

from ..config.defaults import DEFAULT_IGNORE_PATTERNS, NOTE_EXTENSIONS
from .exceptions import StoreError
from .extraction import DocumentExtraction
from .models import FolderEntry, NoteRef, NotesIndexPlan


def normalize_note_id(note_id: str) -> str:
    """Canonical note id: forward slashes, no leading ``notes/`` prefix."""
    normalized = note_id.replace("\\", "/")
    if normalized.startswith("notes/"):
        normalized = normalized[len("notes/") :]
    return normalized


class LocalStore:
    """``DurableStore`` backed by the local file system."""

    def __init__(
        self,
        index_dir: Path,
        notes_dir: Path | None = None,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """Initialize store.

        Args:
            index_dir: Directory holding the JSON record files
            notes_dir: Root of the notes corpus (optional)
            ignore_patterns: Directory / file names never listed
        """
        self.index_dir = index_dir
        self.notes_dir = notes_dir
        self.ignore_patterns = set(ignore_patterns or DEFAULT_IGNORE_PATTERNS)
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    # ── JSON documents ──────────────────────────────────────────────────

    async def _load(self, name: str) -> dict[str, Any]:
        if name in self._documents:
            return self._documents[name]
        path = self.index_dir / f"{name}.json"
        data: dict[str, Any] = {}
        if path.exists():
            try:
                async with aiofiles.open(path, "rb") as f:
                    data = orjson.loads(await f.read())
            except (OSError, orjson.JSONDecodeError) as e:
                raise StoreError(f"Failed to read {path}: {e}", {"path": str(path)}) from e
        self._documents[name] = data
        return data

    async def _save(self, name: str) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        path = self.index_dir / f"{name}.json"
        temp_file = path.with_suffix(".tmp")
        try:
            async with aiofiles.open(temp_file, "wb") as f:
                await f.write(orjson.dumps(self._documents[name]))
            temp_file.replace(path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise StoreError(f"Failed to write {path}: {e}", {"path": str(path)}) from e

    # ── Content ─────────────────────────────────────────────────────────

    async def get_content(self, path: str) -> str:
        try:
            async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
                return await f.read()
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}", {"path": path}) from e

    def _ignored(self, name: str) -> bool:
        return name.startswith(".") or name in self.ignore_patterns

    def _walk(self, root: Path) -> list[FolderEntry]:
        entries = []
        for current, dirs, files in os.walk(root):
            # Prune ignored directories in place so os.walk skips them
            dirs[:] = sorted(d for d in dirs if not self._ignored(d))
            current_path = Path(current)
            for d in dirs:
                entries.append(
                    FolderEntry(name=d, path=str(current_path / d), kind="folder")
                )
            for name in sorted(files):
                if not self._ignored(name):
                    entries.append(
                        FolderEntry(name=name, path=str(current_path / name), kind="file")
                    )
        return entries

    async def list_recursive(self, path: str) -> list[FolderEntry]:
        root = Path(path)
        if not root.is_dir():
            raise StoreError(f"Not a directory: {path}", {"path": path})
        entries = await asyncio.to_thread(self._walk, root)
        logger.debug(f"Listed {len(entries)} entries under {path}")
        return entries

    # ── Vectors and graph ───────────────────────────────────────────────

    async def upsert_vector(
        self, hub_id: str, item_id: str, vector: list[float], force_reindex: bool
    ) -> bool:
        async with self._lock:
            vectors = await self._load("vectors")
            hub_vectors = vectors.setdefault(hub_id, {})
            if item_id in hub_vectors and not force_reindex:
                logger.debug(f"Vector for {item_id} already stored, keeping it")
                return True
            hub_vectors[item_id] = vector
            await self._save("vectors")
        return True

    async def upsert_graph(
        self,
        extraction: DocumentExtraction,
        item_id: str,
        vector: list[float],
        hub_id: str,
        path: str,
    ) -> bool:
        async with self._lock:
            graph = await self._load("graph")
            graph[item_id] = {
                "hub_id": hub_id,
                "path": path,
                "dimensions": len(vector),
                "extraction": extraction.model_dump(mode="json"),
            }
            await self._save("graph")
        return True

    async def delete_vectors(self, hub_id: str, item_id: str) -> bool:
        async with self._lock:
            vectors = await self._load("vectors")
            removed = vectors.get(hub_id, {}).pop(item_id, None) is not None
            if removed:
                await self._save("vectors")
        return removed

    async def delete_graph_node(self, item_id: str) -> bool:
        async with self._lock:
            graph = await self._load("graph")
            removed = graph.pop(item_id, None) is not None
            if removed:
                await self._save("graph")
        return removed

    async def get_vector(self, hub_id: str, item_id: str) -> list[float] | None:
        vectors = await self._load("vectors")
        return vectors.get(hub_id, {}).get(item_id)

    async def get_graph_record(self, item_id: str) -> dict[str, Any] | None:
        graph = await self._load("graph")
        return graph.get(item_id)

    # ── Notes corpus ────────────────────────────────────────────────────

    def set_notes_root(self, path: Path) -> None:
        logger.info(f"Notes root set to {path}")
        self.notes_dir = path

    def _note_files(self) -> list[Path]:
        if self.notes_dir is None or not self.notes_dir.is_dir():
            return []
        extensions = {ext.lower() for ext in NOTE_EXTENSIONS}
        return [
            Path(entry.path)
            for entry in self._walk(self.notes_dir)
            if entry.kind == "file" and Path(entry.name).suffix.lower() in extensions
        ]

    async def get_notes_needing_indexing(
        self, force_reindex: bool = False
    ) -> NotesIndexPlan:
        if self.notes_dir is None or not self.notes_dir.is_dir():
            return NotesIndexPlan()
        note_files = await asyncio.to_thread(self._note_files)
        on_disk = {
            normalize_note_id(path.relative_to(self.notes_dir).as_posix()): path
            for path in note_files
        }

        indexed = await self._prune_notes(set(on_disk))
        plan = NotesIndexPlan(total=len(on_disk))

        for note_id, path in on_disk.items():
            if note_id in indexed and not force_reindex:
                plan.already_indexed.append(note_id)
                continue

            try:
                content = await self.get_content(str(path))
            except StoreError as e:
                logger.warning(f"Skipping unreadable note {note_id}: {e}")
                continue
            if not content.strip():
                logger.debug(f"Skipping empty note: {note_id}")
                continue

            plan.needs_indexing.append(NoteRef(id=note_id, path=str(path), title=path.stem))

        logger.debug(
            f"Notes: {plan.total} total, {len(plan.already_indexed)} indexed, "
            f"{len(plan.needs_indexing)} need indexing"
        )
        return plan

    async def mark_indexed(self, note_id: str, vector: list[float]) -> bool:
        async with self._lock:
            notes = await self._load("notes")
            notes[normalize_note_id(note_id)] = vector
            await self._save("notes")
        return True

    async def delete_note_vectors(self, note_id: str) -> bool:
        async with self._lock:
            notes = await self._load("notes")
            if notes.pop(normalize_note_id(note_id), None) is None:
                return False
            await self._save("notes")
        logger.debug(f"Deleted vectors of note {note_id}")
        return True

    async def clear_notes_index(self) -> int:
        async with self._lock:
            notes = await self._load("notes")
            count = len(notes)
            notes.clear()
            await self._save("notes")
        logger.info(f"Cleared {count} note vectors")
        return count

    async def _prune_notes(self, on_disk: set[str]) -> set[str]:
        """Drop vectors of notes that are no longer below the notes root."""
        async with self._lock:
            notes = await self._load("notes")
            stale = [note_id for note_id in notes if normalize_note_id(note_id) not in on_disk]
            if stale:
                for note_id in stale:
                    del notes[note_id]
                await self._save("notes")
                logger.info(f"Removed vectors of {len(stale)} notes missing from disk")
            return {normalize_note_id(note_id) for note_id in notes}

    async def indexed_note_ids(self) -> list[str]:
        return sorted(await self._load("notes"))

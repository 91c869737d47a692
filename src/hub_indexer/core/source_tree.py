"""In-memory source tree: hubs, their files, folders and notes.

Storage is arena-style: one flat map of hub records and one flat map of
``(hub_id, item_id) -> node``. Hubs and folders only keep ordered id lists,
so no node holds a reference to its parent. Nodes are pydantic values; every
mutation reads the current node, builds an updated copy and writes it back
whole. Mutating methods are synchronous, so on a single event loop no other
task can interleave with a half-done update; the ``RLock`` additionally
protects against observers or signal handlers running on other threads.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import orjson
from loguru import logger

from .exceptions import (
    DuplicateItemError,
    HubNotFoundError,
    ItemNotFoundError,
    SourceTreeError,
)
from .models import (
    HUB_TO_SOURCE_STATUS,
    FileSource,
    FolderSource,
    Hub,
    HubStatus,
    NoteSource,
    SourceStatus,
    new_id,
)
from .store import DurableStore

Node = FileSource | FolderSource | NoteSource


@dataclass
class _HubRecord:
    id: str
    name: str
    status: HubStatus = HubStatus.DRAFT
    bookmarked: bool = False
    file_ids: list[str] = field(default_factory=list)
    folder_ids: list[str] = field(default_factory=list)
    note_ids: list[str] = field(default_factory=list)
    # folder id -> ordered ids of its file items
    folder_items: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusChange:
    """Emitted to observers whenever a hub or item status is written."""

    hub_id: str
    item_id: str | None  # None for the hub itself
    kind: str  # "hub", "file", "folder", "note"
    status: str
    error_message: str | None = None


StatusListener = Callable[[StatusChange], None]


class SourceTree:
    """Owns every hub and source node, keyed by id."""

    def __init__(self, store: DurableStore | None = None) -> None:
        """Initialize an empty tree.

        Args:
            store: Durable store used to purge derived vectors / graph nodes
                when items are removed (optional)
        """
        self.store = store
        self._hubs: dict[str, _HubRecord] = {}
        self._nodes: dict[tuple[str, str], Node] = {}
        self._listeners: list[StatusListener] = []
        self._lock = threading.RLock()

    # ── Observers ───────────────────────────────────────────────────────

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status observer; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: StatusChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.debug(f"Status listener failed: {e}")

    # ── Hubs ────────────────────────────────────────────────────────────

    def _record(self, hub_id: str) -> _HubRecord:
        record = self._hubs.get(hub_id)
        if record is None:
            raise HubNotFoundError(f"Hub not found: {hub_id}", {"hub_id": hub_id})
        return record

    def create_hub(self, name: str, hub_id: str | None = None) -> Hub:
        with self._lock:
            hub_id = hub_id or new_id()
            if hub_id in self._hubs:
                raise DuplicateItemError(f"Hub already exists: {hub_id}")
            self._hubs[hub_id] = _HubRecord(id=hub_id, name=name)
            logger.debug(f"Created hub {name} ({hub_id})")
            return self.get_hub(hub_id)

    def add_hub(self, hub: Hub) -> Hub:
        """Insert a fully-formed hub value (used when loading saved state)."""
        with self._lock:
            if hub.id in self._hubs:
                raise DuplicateItemError(f"Hub already exists: {hub.id}")
            self._hubs[hub.id] = _HubRecord(
                id=hub.id, name=hub.name, status=hub.status, bookmarked=hub.bookmarked
            )
            try:
                for file in hub.files:
                    self.add_file(hub.id, file)
                for folder in hub.folders:
                    self.add_folder(hub.id, folder)
                for note in hub.notes:
                    self.add_note(hub.id, note)
            except SourceTreeError:
                self._drop_hub(hub.id)
                raise
            return self.get_hub(hub.id)

    def has_hub(self, hub_id: str) -> bool:
        return hub_id in self._hubs

    def find_hub(self, name_or_id: str) -> Hub | None:
        """Look a hub up by id, then by (case-insensitive) name."""
        with self._lock:
            if name_or_id in self._hubs:
                return self.get_hub(name_or_id)
            for record in self._hubs.values():
                if record.name.lower() == name_or_id.lower():
                    return self.get_hub(record.id)
            return None

    def get_hub(self, hub_id: str) -> Hub:
        """Materialize a hub snapshot (a detached value, safe to keep)."""
        with self._lock:
            record = self._record(hub_id)
            return Hub(
                id=record.id,
                name=record.name,
                status=record.status,
                bookmarked=record.bookmarked,
                files=[self._nodes[(hub_id, i)] for i in record.file_ids],
                folders=[
                    self._folder_snapshot(hub_id, folder_id)
                    for folder_id in record.folder_ids
                ],
                notes=[self._nodes[(hub_id, i)] for i in record.note_ids],
            )

    def hubs(self) -> list[Hub]:
        with self._lock:
            return [self.get_hub(hub_id) for hub_id in self._hubs]

    def rename_hub(self, hub_id: str, name: str) -> Hub:
        with self._lock:
            self._record(hub_id).name = name
            return self.get_hub(hub_id)

    def toggle_bookmark(self, hub_id: str) -> bool:
        with self._lock:
            record = self._record(hub_id)
            record.bookmarked = not record.bookmarked
            return record.bookmarked

    def get_hub_status(self, hub_id: str) -> HubStatus:
        return self._record(hub_id).status

    def is_composing(self, hub_id: str) -> bool:
        record = self._hubs.get(hub_id)
        return record is not None and record.status == HubStatus.COMPOSING

    def set_hub_status(
        self, hub_id: str, status: HubStatus, cascade: bool = False
    ) -> None:
        """Write the hub status.

        Args:
            hub_id: Hub to update
            status: New hub status
            cascade: Also set every file, folder, folder item and note to the
                matching source status (``composing`` -> ``processing``...)
        """
        with self._lock:
            record = self._record(hub_id)
            record.status = status
            if cascade:
                item_status = HUB_TO_SOURCE_STATUS[status]
                for item_id in self._all_item_ids(record):
                    self._write_status(hub_id, item_id, item_status, None)
        logger.debug(f"Hub {hub_id} status -> {status}")
        self._emit(StatusChange(hub_id=hub_id, item_id=None, kind="hub", status=status))

    async def delete_hub(self, hub_id: str) -> Hub:
        """Remove a hub and purge every derived vector / graph node."""
        with self._lock:
            snapshot = self.get_hub(hub_id)
            self._drop_hub(hub_id)
        for file in snapshot.files:
            await self._purge_index(hub_id, file.id)
        for folder in snapshot.folders:
            for item in folder.items:
                await self._purge_index(hub_id, item.id)
            await self._purge_index(hub_id, folder.id, graph=False)
        for note in snapshot.notes:
            await self._purge_index(hub_id, note.id)
        return snapshot

    def _drop_hub(self, hub_id: str) -> None:
        self._hubs.pop(hub_id, None)
        for key in [key for key in self._nodes if key[0] == hub_id]:
            del self._nodes[key]

    # ── Items ───────────────────────────────────────────────────────────

    def _all_item_ids(self, record: _HubRecord) -> list[str]:
        ids = list(record.file_ids) + list(record.folder_ids) + list(record.note_ids)
        for items in record.folder_items.values():
            ids.extend(items)
        return ids

    def _insert(self, hub_id: str, node: Node) -> None:
        key = (hub_id, node.id)
        if key in self._nodes:
            raise DuplicateItemError(
                f"Item id already used in hub {hub_id}: {node.id}",
                {"hub_id": hub_id, "item_id": node.id},
            )
        self._nodes[key] = node

    def add_file(self, hub_id: str, file: FileSource) -> FileSource:
        with self._lock:
            record = self._record(hub_id)
            self._insert(hub_id, file)
            record.file_ids.append(file.id)
            return file

    def add_folder(self, hub_id: str, folder: FolderSource) -> FolderSource:
        with self._lock:
            record = self._record(hub_id)
            items = list(folder.items)
            new_ids = [folder.id] + [item.id for item in items]
            for item_id in new_ids:
                if (hub_id, item_id) in self._nodes or new_ids.count(item_id) > 1:
                    raise DuplicateItemError(
                        f"Item id already used in hub {hub_id}: {item_id}",
                        {"hub_id": hub_id, "item_id": item_id},
                    )
            self._insert(hub_id, folder.model_copy(update={"items": []}))
            record.folder_ids.append(folder.id)
            record.folder_items[folder.id] = []
            for item in items:
                self._insert(hub_id, item)
                record.folder_items[folder.id].append(item.id)
            return self._folder_snapshot(hub_id, folder.id)

    def add_note(self, hub_id: str, note: NoteSource) -> NoteSource:
        with self._lock:
            record = self._record(hub_id)
            self._insert(hub_id, note)
            record.note_ids.append(note.id)
            return note

    def get_item(self, hub_id: str, item_id: str) -> Node:
        with self._lock:
            self._record(hub_id)
            node = self._nodes.get((hub_id, item_id))
            if node is None:
                raise ItemNotFoundError(
                    f"Item not found in hub {hub_id}: {item_id}",
                    {"hub_id": hub_id, "item_id": item_id},
                )
            if isinstance(node, FolderSource):
                return self._folder_snapshot(hub_id, item_id)
            return node

    def get_folder(self, hub_id: str, folder_id: str) -> FolderSource:
        node = self.get_item(hub_id, folder_id)
        if not isinstance(node, FolderSource):
            raise ItemNotFoundError(f"Not a folder: {folder_id}")
        return node

    def _folder_snapshot(self, hub_id: str, folder_id: str) -> FolderSource:
        folder = self._nodes[(hub_id, folder_id)]
        item_ids = self._hubs[hub_id].folder_items.get(folder_id, [])
        return folder.model_copy(
            update={"items": [self._nodes[(hub_id, i)] for i in item_ids]}
        )

    def _write_status(
        self,
        hub_id: str,
        item_id: str,
        status: SourceStatus,
        error_message: str | None,
    ) -> Node:
        current = self._nodes[(hub_id, item_id)]
        updated = current.model_copy(
            update={
                "status": status,
                "error_message": error_message if status == SourceStatus.ERROR else None,
            }
        )
        self._nodes[(hub_id, item_id)] = updated
        return updated

    def set_item_status(
        self,
        hub_id: str,
        item_id: str,
        status: SourceStatus,
        error_message: str | None = None,
    ) -> Node:
        """Write the status of a file, folder item, folder or note.

        ``error_message`` is kept only for ``error``; any other status clears it.
        """
        with self._lock:
            self._record(hub_id)
            if (hub_id, item_id) not in self._nodes:
                raise ItemNotFoundError(
                    f"Item not found in hub {hub_id}: {item_id}",
                    {"hub_id": hub_id, "item_id": item_id},
                )
            updated = self._write_status(hub_id, item_id, status, error_message)
        self._emit(
            StatusChange(
                hub_id=hub_id,
                item_id=item_id,
                kind=updated.type,
                status=status,
                error_message=updated.error_message,
            )
        )
        return updated

    def upsert_folder_item(
        self, hub_id: str, folder_id: str, file: FileSource
    ) -> FileSource:
        """Add a file under a folder, or merge it into the matching item.

        An existing item matches by id first, then by path; a path match
        keeps the existing id so derived vectors stay attached to it.

        Returns:
            The stored file item
        """
        with self._lock:
            record = self._record(hub_id)
            if folder_id not in record.folder_items:
                raise ItemNotFoundError(f"Folder not found in hub {hub_id}: {folder_id}")
            item_ids = record.folder_items[folder_id]

            existing_id = None
            if file.id in item_ids:
                existing_id = file.id
            else:
                for item_id in item_ids:
                    if self._nodes[(hub_id, item_id)].path == file.path:
                        existing_id = item_id
                        break

            if existing_id is not None:
                current = self._nodes[(hub_id, existing_id)]
                merged = current.model_copy(
                    update=file.model_dump(exclude={"id"}, exclude_unset=False)
                )
                self._nodes[(hub_id, existing_id)] = merged
                stored = merged
            else:
                self._insert(hub_id, file)
                item_ids.append(file.id)
                stored = file

        self._emit(
            StatusChange(
                hub_id=hub_id,
                item_id=stored.id,
                kind="file",
                status=stored.status,
                error_message=stored.error_message,
            )
        )
        return stored

    async def remove_item(self, hub_id: str, item_id: str) -> Node:
        """Remove a file, folder (with its items) or note from a hub.

        Derived vectors and graph nodes are deleted afterwards on a
        best-effort basis; failures are logged, not raised.
        """
        with self._lock:
            record = self._record(hub_id)
            node = self.get_item(hub_id, item_id)
            if item_id in record.file_ids:
                record.file_ids.remove(item_id)
            elif item_id in record.folder_ids:
                record.folder_ids.remove(item_id)
                for child_id in record.folder_items.pop(item_id, []):
                    self._nodes.pop((hub_id, child_id), None)
            elif item_id in record.note_ids:
                record.note_ids.remove(item_id)
            else:
                for items in record.folder_items.values():
                    if item_id in items:
                        items.remove(item_id)
            self._nodes.pop((hub_id, item_id), None)

        if isinstance(node, FolderSource):
            for child in node.items:
                await self._purge_index(hub_id, child.id)
            await self._purge_index(hub_id, node.id, graph=False)
        else:
            await self._purge_index(hub_id, node.id)
        return node

    async def _purge_index(self, hub_id: str, item_id: str, graph: bool = True) -> None:
        if self.store is None:
            return
        try:
            await self.store.delete_vectors(hub_id, item_id)
            if graph:
                await self.store.delete_graph_node(item_id)
        except Exception as e:
            logger.warning(f"Failed to purge index entries for {item_id}: {e}")

    # ── Persistence ─────────────────────────────────────────────────────

    def save(self, path: Path) -> None:
        """Write every hub to a JSON state file."""
        with self._lock:
            data = {"hubs": [hub.model_dump(mode="json") for hub in self.hubs()]}
        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file + rename
        temp_file = path.with_suffix(".tmp")
        try:
            with open(temp_file, "wb") as f:
                f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
            temp_file.replace(path)
        except OSError as e:
            logger.error(f"Failed to save hub state: {e}")
            temp_file.unlink(missing_ok=True)
            raise SourceTreeError(
                f"Failed to write hub state: {e}", {"path": str(path)}
            ) from e
        logger.debug(f"Saved {len(data['hubs'])} hubs to {path}")

    @classmethod
    def load(cls, path: Path, store: DurableStore | None = None) -> "SourceTree":
        """Load a tree saved with :meth:`save` (empty tree if the file is missing)."""
        tree = cls(store=store)
        if not path.exists():
            return tree
        try:
            with open(path, "rb") as f:
                data = orjson.loads(f.read())
        except (OSError, orjson.JSONDecodeError) as e:
            raise SourceTreeError(f"Failed to read hub state: {e}", {"path": str(path)}) from e
        for hub_data in data.get("hubs", []):
            hub = Hub.model_validate(hub_data)
            if hub.status == HubStatus.COMPOSING:
                # The process that was composing this hub is gone
                logger.warning(f"Hub {hub.name} was left composing, resetting to draft")
                hub = hub.model_copy(update={"status": HubStatus.DRAFT})
            tree.add_hub(hub)
        return tree

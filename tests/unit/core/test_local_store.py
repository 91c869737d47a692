"""Unit tests for the file-system durable store."""

import orjson
import pytest

from hub_indexer.core.exceptions import StoreError
from hub_indexer.core.extraction import DocumentExtraction
from hub_indexer.core.local_store import LocalStore, normalize_note_id
from hub_indexer.core.store import DurableStore


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "index", notes_dir=tmp_path / "notes")


@pytest.fixture
def notes_dir(tmp_path):
    notes = tmp_path / "notes"
    (notes / "projects").mkdir(parents=True)
    (notes / "todo.md").write_text("buy milk")
    (notes / "projects" / "plan.markdown").write_text("the plan")
    (notes / "empty.txt").write_text("   ")
    (notes / "image.png").write_bytes(b"\x89PNG")
    (notes / ".obsidian").mkdir()
    (notes / ".obsidian" / "cache.md").write_text("hidden")
    return notes


class TestNormalizeNoteId:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("notes/a.md", "a.md"),
            ("projects\\plan.md", "projects/plan.md"),
            ("a.md", "a.md"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_note_id(raw) == expected


class TestContentAndListing:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, DurableStore)

    @pytest.mark.asyncio
    async def test_get_content(self, store, tmp_path):
        path = tmp_path / "doc.md"
        path.write_text("hello")
        assert await store.get_content(str(path)) == "hello"

    @pytest.mark.asyncio
    async def test_get_content_missing(self, store, tmp_path):
        with pytest.raises(StoreError):
            await store.get_content(str(tmp_path / "missing.md"))

    @pytest.mark.asyncio
    async def test_list_recursive_skips_hidden_and_ignored(self, store, tmp_path):
        root = tmp_path / "data"
        (root / "sub").mkdir(parents=True)
        (root / "node_modules").mkdir()
        (root / "node_modules" / "pkg.js").write_text("x")
        (root / ".git").mkdir()
        (root / "a.md").write_text("a")
        (root / "sub" / "b.md").write_text("b")
        (root / ".hidden.md").write_text("h")

        entries = await store.list_recursive(str(root))

        assert [(entry.name, entry.kind) for entry in entries] == [
            ("sub", "folder"),
            ("a.md", "file"),
            ("b.md", "file"),
        ]
        assert entries[2].path == str(root / "sub" / "b.md")

    @pytest.mark.asyncio
    async def test_list_recursive_requires_directory(self, store, tmp_path):
        with pytest.raises(StoreError):
            await store.list_recursive(str(tmp_path / "missing"))


class TestVectorsAndGraph:
    @pytest.mark.asyncio
    async def test_upsert_vector_persists(self, store, tmp_path):
        assert await store.upsert_vector("h1", "f1", [1.0, 2.0], force_reindex=True)

        reloaded = LocalStore(tmp_path / "index")
        assert await reloaded.get_vector("h1", "f1") == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_upsert_without_force_keeps_existing(self, store):
        await store.upsert_vector("h1", "f1", [1.0], force_reindex=True)

        assert await store.upsert_vector("h1", "f1", [9.0], force_reindex=False)
        assert await store.get_vector("h1", "f1") == [1.0]

        await store.upsert_vector("h1", "f1", [9.0], force_reindex=True)
        assert await store.get_vector("h1", "f1") == [9.0]

    @pytest.mark.asyncio
    async def test_graph_record(self, store, tmp_path):
        extraction = DocumentExtraction(document_id="f1")

        await store.upsert_graph(extraction, "f1", [1.0, 2.0, 3.0], "h1", "/docs/a.md")

        record = await store.get_graph_record("f1")
        assert record["path"] == "/docs/a.md"
        assert record["dimensions"] == 3
        on_disk = orjson.loads((tmp_path / "index" / "graph.json").read_bytes())
        assert on_disk["f1"]["extraction"]["document_id"] == "f1"

    @pytest.mark.asyncio
    async def test_deletes(self, store):
        await store.upsert_vector("h1", "f1", [1.0], force_reindex=True)
        await store.upsert_graph(DocumentExtraction(document_id="f1"), "f1", [1.0], "h1", "p")

        assert await store.delete_vectors("h1", "f1") is True
        assert await store.delete_vectors("h1", "f1") is False
        assert await store.delete_graph_node("f1") is True
        assert await store.get_graph_record("f1") is None

    @pytest.mark.asyncio
    async def test_corrupt_document(self, store, tmp_path):
        (tmp_path / "index").mkdir()
        (tmp_path / "index" / "vectors.json").write_text("{broken")

        with pytest.raises(StoreError):
            await store.get_vector("h1", "f1")


class TestNotesCorpus:
    @pytest.mark.asyncio
    async def test_discovery_partitions_notes(self, store, notes_dir):
        await store.mark_indexed("notes/todo.md", [1.0])

        plan = await store.get_notes_needing_indexing()

        assert plan.total == 3
        assert plan.already_indexed == ["todo.md"]
        assert [note.id for note in plan.needs_indexing] == ["projects/plan.markdown"]
        assert plan.needs_indexing[0].title == "plan"

    @pytest.mark.asyncio
    async def test_force_reindex_includes_indexed(self, store, notes_dir):
        await store.mark_indexed("todo.md", [1.0])

        plan = await store.get_notes_needing_indexing(force_reindex=True)

        assert sorted(note.id for note in plan.needs_indexing) == [
            "projects/plan.markdown",
            "todo.md",
        ]

    @pytest.mark.asyncio
    async def test_no_notes_root(self, tmp_path):
        store = LocalStore(tmp_path / "index")
        plan = await store.get_notes_needing_indexing()
        assert plan.total == 0

    @pytest.mark.asyncio
    async def test_set_notes_root(self, store, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        (other / "x.md").write_text("x")

        store.set_notes_root(other)
        plan = await store.get_notes_needing_indexing()

        assert [note.id for note in plan.needs_indexing] == ["x.md"]

    @pytest.mark.asyncio
    async def test_mark_indexed_normalizes_ids(self, store):
        await store.mark_indexed("notes\\projects\\plan.md", [1.0])
        assert await store.indexed_note_ids() == ["projects/plan.md"]

    @pytest.mark.asyncio
    async def test_delete_note_vectors(self, store):
        await store.mark_indexed("todo.md", [1.0])

        assert await store.delete_note_vectors("notes/todo.md") is True
        assert await store.delete_note_vectors("todo.md") is False
        assert await store.indexed_note_ids() == []

    @pytest.mark.asyncio
    async def test_clear_notes_index(self, store, notes_dir, tmp_path):
        await store.mark_indexed("todo.md", [1.0])
        await store.mark_indexed("projects/plan.markdown", [2.0])

        assert await store.clear_notes_index() == 2

        assert await store.indexed_note_ids() == []
        assert await LocalStore(tmp_path / "index").indexed_note_ids() == []
        plan = await store.get_notes_needing_indexing()
        assert len(plan.needs_indexing) == 2

    @pytest.mark.asyncio
    async def test_discovery_prunes_notes_missing_from_disk(self, store, notes_dir):
        await store.mark_indexed("todo.md", [1.0])
        await store.mark_indexed("deleted.md", [2.0])
        await store.mark_indexed("moved/away.md", [3.0])

        plan = await store.get_notes_needing_indexing()

        assert plan.already_indexed == ["todo.md"]
        assert await store.indexed_note_ids() == ["todo.md"]

    @pytest.mark.asyncio
    async def test_empty_notes_root_prunes_everything(self, store, tmp_path):
        (tmp_path / "notes").mkdir()
        await store.mark_indexed("gone.md", [1.0])

        plan = await store.get_notes_needing_indexing()

        assert plan.total == 0
        assert await store.indexed_note_ids() == []

    @pytest.mark.asyncio
    async def test_saves_leave_no_temp_files(self, store, tmp_path):
        await store.mark_indexed("a.md", [1.0])
        await store.upsert_vector("h1", "f1", [1.0], force_reindex=True)

        assert sorted(p.name for p in (tmp_path / "index").iterdir()) == [
            "notes.json",
            "vectors.json",
        ]

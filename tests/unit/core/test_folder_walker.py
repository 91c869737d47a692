"""Unit tests for folder expansion and processing."""

import pytest

from hub_indexer.core.cancellation import AbortToken
from hub_indexer.core.folder_walker import FolderWalker
from hub_indexer.core.models import FileSource, FolderEntry, FolderSource, SourceStatus
from hub_indexer.core.processor import ItemProcessor


def listing(*names: str, root: str = "/data") -> list[FolderEntry]:
    entries = [FolderEntry(name="sub", path=f"{root}/sub", kind="folder")]
    for name in names:
        entries.append(FolderEntry(name=name, path=f"{root}/{name}", kind="file"))
    return entries


@pytest.fixture
def hub(tree):
    return tree.create_hub("Research")


@pytest.fixture
def folder(tree, hub):
    return tree.add_folder(hub.id, FolderSource(path="/data"))


@pytest.fixture
def walker(tree, fake_store, fake_embedder):
    processor = ItemProcessor(tree, fake_store, fake_embedder)
    return FolderWalker(tree, fake_store, processor, delay_seconds=0)


class TestDiscover:
    @pytest.mark.asyncio
    async def test_seeds_file_items_as_processing(self, tree, hub, folder, walker, fake_store):
        fake_store.listings["/data"] = listing("a.md", "b.pdf")

        items = await walker.discover(hub.id, folder)

        assert [item.name for item in items] == ["a.md", "b.pdf"]
        stored = tree.get_folder(hub.id, folder.id)
        assert [item.status for item in stored.items] == [SourceStatus.PROCESSING] * 2
        assert stored.items[1].file_type == "pdf"
        assert fake_store.list_calls == ["/data"]

    @pytest.mark.asyncio
    async def test_rediscovery_reuses_existing_item_ids(
        self, tree, hub, folder, walker, fake_store
    ):
        fake_store.listings["/data"] = listing("a.md")
        first = await walker.discover(hub.id, folder)
        second = await walker.discover(hub.id, folder)

        assert first[0].id == second[0].id
        assert len(tree.get_folder(hub.id, folder.id).items) == 1


class TestProcessFolder:
    @pytest.mark.asyncio
    async def test_all_items_ready_marks_folder_ready(
        self, tree, hub, folder, walker, fake_store
    ):
        fake_store.listings["/data"] = listing("a.md", "b.md")
        fake_store.contents.update({"/data/a.md": "alpha", "/data/b.md": "beta"})

        outcome = await walker.process_folder(hub.id, folder)

        assert (outcome.success, outcome.error) == (2, 0)
        assert outcome.status == SourceStatus.READY
        stored = tree.get_folder(hub.id, folder.id)
        assert stored.status == SourceStatus.READY
        assert stored.error_message is None
        assert all(item.status == SourceStatus.READY for item in stored.items)

    @pytest.mark.asyncio
    async def test_one_failed_item_marks_folder_error(
        self, tree, hub, folder, walker, fake_store
    ):
        fake_store.listings["/data"] = listing("a.md", "empty.md")
        fake_store.contents.update({"/data/a.md": "alpha", "/data/empty.md": ""})

        outcome = await walker.process_folder(hub.id, folder)

        assert (outcome.success, outcome.error) == (1, 1)
        stored = tree.get_folder(hub.id, folder.id)
        assert stored.status == SourceStatus.ERROR
        assert stored.error_message == "1 file(s) failed"

    @pytest.mark.asyncio
    async def test_listing_failure_marks_folder_error(
        self, tree, hub, folder, walker, fake_store
    ):
        fake_store.fail_listing.add("/data")

        outcome = await walker.process_folder(hub.id, folder)

        assert outcome.status == SourceStatus.ERROR
        assert tree.get_folder(hub.id, folder.id).error_message.startswith(
            "Failed to list folder"
        )

    @pytest.mark.asyncio
    async def test_seeded_items_skip_the_listing(self, tree, hub, folder, walker, fake_store):
        fake_store.contents["/data/a.md"] = "alpha"
        item = tree.upsert_folder_item(
            hub.id, folder.id, FileSource.from_path("/data/a.md")
        )

        outcome = await walker.process_folder(hub.id, folder, items=[item])

        assert outcome.success == 1
        assert fake_store.list_calls == []

    @pytest.mark.asyncio
    async def test_abort_before_start_marks_folder_error(
        self, tree, hub, folder, walker, fake_store
    ):
        fake_store.listings["/data"] = listing("a.md")
        token = AbortToken()
        token.set()

        outcome = await walker.process_folder(hub.id, folder, token)

        assert outcome.aborted is True
        assert outcome.status == SourceStatus.ERROR
        assert tree.get_folder(hub.id, folder.id).error_message == "Aborted"
        assert fake_store.list_calls == []

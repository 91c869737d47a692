"""Unit tests for the corpus-wide notes indexing coordinator."""

import asyncio
from pathlib import Path

import pytest

from hub_indexer.core.coordinator import IndexingCoordinator, StartStatus
from hub_indexer.core.embedding_worker import EmbeddingWorker
from hub_indexer.core.events import (
    INDEXING_STATUS_TOPIC,
    EventBus,
    NoteEmbeddingResponse,
)
from hub_indexer.core.jobs import JobRegistry, JobStatus, corpus_key


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_coordinator(fake_store, registry, bus, fake_embedder, sink):
    def make(embedder=fake_embedder, **kwargs) -> IndexingCoordinator:
        kwargs.setdefault("delay_seconds", 0)
        kwargs.setdefault("abort_grace_seconds", 0)
        return IndexingCoordinator(
            fake_store, registry, bus, embedder, progress=sink, **kwargs
        )

    return make


async def drain(subscription) -> list:
    subscription.close()
    return [event async for event in subscription]


class TestStartIndexing:
    @pytest.mark.asyncio
    async def test_indexes_every_note_needing_it(self, make_coordinator, fake_store, bus):
        fake_store.add_note("a.md", "alpha")
        fake_store.add_note("b.md", "beta")
        fake_store.indexed["c.md"] = [1.0]
        fake_store.add_note("c.md", "gamma")
        events = bus.subscribe(INDEXING_STATUS_TOPIC)
        coordinator = make_coordinator()

        result = await coordinator.start_indexing()
        job = await coordinator.wait()

        assert result.status == StartStatus.STARTED
        assert (result.total, result.already_indexed) == (2, 1)
        assert job.status == JobStatus.COMPLETED
        assert (job.total, job.processed, job.error_count) == (2, 2, 0)
        assert set(fake_store.indexed) == {"a.md", "b.md", "c.md"}
        assert coordinator.status.status == JobStatus.IDLE
        assert [event.status for event in await drain(events)] == [
            JobStatus.STARTED,
            JobStatus.STARTED,
            JobStatus.PROGRESS,
            JobStatus.PROGRESS,
            JobStatus.COMPLETED,
            JobStatus.IDLE,
        ]

    @pytest.mark.asyncio
    async def test_failed_notes_are_counted(self, make_coordinator, make_embedder, fake_store):
        fake_store.add_note("a.md", "alpha")
        fake_store.add_note("b.md", "beta")
        fake_store.add_note("empty.md", "  ")
        coordinator = make_coordinator(embedder=make_embedder(fail_on={"beta"}))

        await coordinator.start_indexing()
        job = await coordinator.wait()

        assert job.status == JobStatus.COMPLETED
        assert (job.processed, job.error_count) == (3, 2)
        assert set(fake_store.indexed) == {"a.md"}

    @pytest.mark.asyncio
    async def test_nothing_to_index(self, make_coordinator, fake_store, registry):
        fake_store.indexed["a.md"] = [1.0]
        fake_store.add_note("a.md", "alpha")
        coordinator = make_coordinator()

        result = await coordinator.start_indexing()

        assert result.status == StartStatus.COMPLETED
        assert result.already_indexed == 1
        assert await coordinator.wait() is None
        assert registry.get(coordinator.key) is None

    @pytest.mark.asyncio
    async def test_force_reindex_includes_indexed_notes(self, make_coordinator, fake_store):
        fake_store.indexed["a.md"] = [1.0]
        fake_store.add_note("a.md", "alpha")
        coordinator = make_coordinator()

        result = await coordinator.start_indexing(force_reindex=True)
        await coordinator.wait()

        assert result.total == 1
        assert fake_store.indexed["a.md"] == [5.0, 1.0]

    @pytest.mark.asyncio
    async def test_discovery_failure(self, make_coordinator, fake_store, registry, sink):
        fake_store.fail_discovery = True
        coordinator = make_coordinator()

        result = await coordinator.start_indexing()

        assert result.status == StartStatus.ERROR
        assert registry.get(coordinator.key) is None
        assert sink.levels() == ["error"]

    @pytest.mark.asyncio
    async def test_second_start_is_skipped_and_counters_unchanged(
        self, make_coordinator, fake_store
    ):
        for i in range(4):
            fake_store.add_note(f"{i}.md", f"note {i}")
        fake_store.content_delay = 0.05
        coordinator = make_coordinator()

        first = await coordinator.start_indexing()
        before = coordinator.status
        second = await coordinator.start_indexing()
        after = coordinator.status
        await coordinator.wait()

        assert first.status == StartStatus.STARTED
        assert before.status == JobStatus.STARTED
        assert second.status == StartStatus.SKIPPED
        assert after == before

    def test_requires_embedder_unless_remote(self, fake_store, registry, bus):
        with pytest.raises(ValueError):
            IndexingCoordinator(fake_store, registry, bus, None)


class TestAbortAndTimeout:
    @pytest.mark.asyncio
    async def test_stop_indexing_aborts_remaining_windows(self, make_coordinator, fake_store):
        for i in range(6):
            fake_store.add_note(f"{i}.md", f"note {i}")
        fake_store.content_delay = 0.05
        coordinator = make_coordinator(concurrency=2)

        await coordinator.start_indexing()
        await asyncio.sleep(0.01)
        assert coordinator.stop_indexing() is True
        job = await coordinator.wait()

        assert job.status == JobStatus.ABORTED
        assert job.processed == 2
        assert fake_store.indexed == {}

    @pytest.mark.asyncio
    async def test_safety_timeout_aborts_and_clears_token(
        self, make_coordinator, make_embedder, fake_store, registry, bus, sink
    ):
        fake_store.add_note("slow.md", "slow note")
        events = bus.subscribe(INDEXING_STATUS_TOPIC)
        coordinator = make_coordinator(
            embedder=make_embedder(delay=5.0),
            safety_timeout_seconds=0.05,
            abort_grace_seconds=0.05,
        )

        await coordinator.start_indexing()
        token = registry.get(corpus_key("notes")).token
        job = await coordinator.wait()

        assert job.status == JobStatus.ABORTED
        assert job.message.startswith("Timed out")
        assert token.is_set is False
        assert registry.get(coordinator.key) is None
        assert coordinator.status.status == JobStatus.IDLE
        statuses = [event.status for event in await drain(events)]
        assert statuses[-2:] == [JobStatus.ABORTED, JobStatus.IDLE]
        assert ("error", "Indexing timed out and was aborted") in sink.messages

    @pytest.mark.asyncio
    async def test_new_run_possible_after_timeout(
        self, make_coordinator, make_embedder, fake_store
    ):
        fake_store.add_note("a.md", "alpha")
        slow = make_coordinator(
            embedder=make_embedder(delay=5.0),
            safety_timeout_seconds=0.05,
            abort_grace_seconds=0.01,
        )
        await slow.start_indexing()
        await slow.wait()

        fast = make_coordinator()
        result = await fast.start_indexing()
        job = await fast.wait()

        assert result.status == StartStatus.STARTED
        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_safety_timeout_covers_discovery(
        self, make_coordinator, fake_store, registry, bus, sink
    ):
        fake_store.add_note("a.md", "alpha")
        fake_store.discovery_delay = 5.0
        events = bus.subscribe(INDEXING_STATUS_TOPIC)
        coordinator = make_coordinator(safety_timeout_seconds=0.05)

        result = await asyncio.wait_for(coordinator.start_indexing(), timeout=1.0)

        assert result.status == StartStatus.ABORTED
        assert result.message.startswith("Timed out")
        assert coordinator.is_indexing is False
        assert registry.get(coordinator.key) is None
        assert coordinator.status.status == JobStatus.IDLE
        assert [event.status for event in await drain(events)] == [
            JobStatus.STARTED,
            JobStatus.ABORTED,
            JobStatus.IDLE,
        ]
        assert ("error", "Indexing timed out and was aborted") in sink.messages

        fake_store.discovery_delay = 0
        again = await coordinator.start_indexing()
        assert again.status == StartStatus.STARTED
        assert (await coordinator.wait()).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_during_discovery_aborts_before_indexing(
        self, make_coordinator, fake_store, registry
    ):
        fake_store.add_note("a.md", "alpha")
        fake_store.discovery_delay = 0.05
        coordinator = make_coordinator()

        start = asyncio.create_task(coordinator.start_indexing())
        await asyncio.sleep(0.01)
        assert coordinator.stop_indexing() is True
        result = await start

        assert result.status == StartStatus.ABORTED
        assert registry.get(coordinator.key) is None
        assert fake_store.indexed == {}

    @pytest.mark.asyncio
    async def test_change_root_restarts_discovery(self, make_coordinator, fake_store):
        for i in range(5):
            fake_store.add_note(f"{i}.md", f"note {i}")
        fake_store.content_delay = 0.02
        coordinator = make_coordinator(concurrency=2)

        await coordinator.start_indexing()
        await asyncio.sleep(0.005)
        result = await coordinator.change_root(Path("/elsewhere"))
        job = await coordinator.wait()

        assert fake_store.notes_root == Path("/elsewhere")
        assert result.status == StartStatus.STARTED
        assert job.status == JobStatus.COMPLETED
        assert len(fake_store.indexed) == 5

    @pytest.mark.asyncio
    async def test_change_root_during_discovery(self, make_coordinator, fake_store):
        fake_store.add_note("a.md", "alpha")
        fake_store.discovery_delay = 0.05
        coordinator = make_coordinator()

        first = asyncio.create_task(coordinator.start_indexing())
        await asyncio.sleep(0.01)
        result = await coordinator.change_root(Path("/elsewhere"))
        job = await coordinator.wait()

        assert (await first).status == StartStatus.ABORTED
        assert fake_store.notes_root == Path("/elsewhere")
        assert result.status == StartStatus.STARTED
        assert job.status == JobStatus.COMPLETED
        assert set(fake_store.indexed) == {"a.md"}

    @pytest.mark.asyncio
    async def test_change_root_when_idle(self, make_coordinator, fake_store):
        coordinator = make_coordinator()

        result = await coordinator.change_root(Path("/empty"))

        assert fake_store.notes_root == Path("/empty")
        assert result.status == StartStatus.COMPLETED


class TestRemoteEmbeddings:
    @pytest.mark.asyncio
    async def test_worker_fulfils_requests(self, make_coordinator, fake_store, fake_embedder, bus):
        fake_store.add_note("a.md", "alpha")
        fake_store.add_note("b.md", "beta")
        worker = EmbeddingWorker(bus, fake_store, fake_embedder, retry_delay=0)
        worker.start()
        await asyncio.sleep(0)
        coordinator = make_coordinator(embedder=None, remote_embeddings=True)

        try:
            await coordinator.start_indexing()
            job = await coordinator.wait()
        finally:
            await worker.stop()

        assert job.status == JobStatus.COMPLETED
        assert job.error_count == 0
        assert worker.handled == 2
        assert fake_store.indexed["b.md"] == [4.0, 1.0]

    @pytest.mark.asyncio
    async def test_no_listener_fails_each_note(self, make_coordinator, fake_store):
        fake_store.add_note("a.md", "alpha")
        coordinator = make_coordinator(embedder=None, remote_embeddings=True)

        await coordinator.start_indexing()
        job = await coordinator.wait()

        assert job.status == JobStatus.COMPLETED
        assert job.error_count == 1
        assert fake_store.indexed == {}

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(
        self, make_coordinator, fake_store, fake_embedder, bus
    ):
        fake_store.add_note("a.md", "alpha")
        worker = EmbeddingWorker(bus, fake_store, fake_embedder, reply=lambda response: None)
        worker.start()
        await asyncio.sleep(0)
        coordinator = make_coordinator(
            embedder=None, remote_embeddings=True, remote_embedding_timeout_seconds=0.05
        )

        try:
            await coordinator.start_indexing()
            job = await coordinator.wait()
        finally:
            await worker.stop()

        assert worker.handled == 1
        assert job.error_count == 1

    def test_unknown_response_is_ignored(self, make_coordinator):
        coordinator = make_coordinator()
        response = NoteEmbeddingResponse(request_id="nope", note_id="a.md", vector=[1.0])
        assert coordinator.submit_embedding(response) is False

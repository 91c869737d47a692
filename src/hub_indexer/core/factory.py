"""Component factory wiring the pipeline from a workspace configuration."""

from dataclasses import dataclass

from loguru import logger

from ..config.defaults import get_default_cache_path
from ..config.settings import IndexerConfig
from .composer import Composer
from .coordinator import IndexingCoordinator
from .embedding_worker import EmbeddingWorker
from .embeddings import EmbeddingProvider, create_embedding_provider
from .events import EventBus
from .extraction import StructuredExtractor
from .folder_walker import FolderWalker
from .jobs import JobRegistry
from .llm_client import LLMClient
from .local_store import LocalStore
from .processor import ItemProcessor
from .progress import LoggingProgressSink, ProgressSink
from .source_tree import SourceTree


@dataclass
class ComponentBundle:
    """Bundle of the components one CLI invocation needs."""

    config: IndexerConfig
    store: LocalStore
    tree: SourceTree
    embedder: EmbeddingProvider
    registry: JobRegistry
    bus: EventBus
    processor: ItemProcessor
    walker: FolderWalker
    composer: Composer
    coordinator: IndexingCoordinator
    worker: EmbeddingWorker | None = None

    def save_state(self) -> None:
        self.tree.save(self.config.state_path)


class ComponentFactory:
    """Factory for creating commonly used components."""

    @staticmethod
    def create_store(config: IndexerConfig) -> LocalStore:
        return LocalStore(config.index_path, notes_dir=config.notes_dir)

    @staticmethod
    def create_embedder(config: IndexerConfig, **kwargs) -> EmbeddingProvider:
        cache_dir = get_default_cache_path(config.workspace) if config.embedding_cache else None
        return create_embedding_provider(
            config.embedding_provider,
            model=config.embedding_model,
            cache_dir=cache_dir,
            **kwargs,
        )

    @staticmethod
    def create_extractor(config: IndexerConfig, **kwargs) -> StructuredExtractor:
        client = LLMClient(provider=config.llm_provider, model=config.llm_model, **kwargs)
        return StructuredExtractor(
            client,
            max_attempts=config.extraction_max_attempts,
            backoff_seconds=config.extraction_backoff_seconds,
            backoff_cap_seconds=config.extraction_backoff_cap_seconds,
        )

    @staticmethod
    def create_components(
        config: IndexerConfig,
        progress: ProgressSink | None = None,
        embedder: EmbeddingProvider | None = None,
        extractor: StructuredExtractor | None = None,
    ) -> ComponentBundle:
        """Create every pipeline component for a workspace.

        Args:
            config: Workspace configuration
            progress: Sink for run notifications (logged if None)
            embedder: Embedding backend override (built from config if None)
            extractor: Structured extractor override (built from config when
                knowledge-graph indexing is enabled)

        Returns:
            ComponentBundle with the source tree loaded from the state file
        """
        progress = progress or LoggingProgressSink()
        store = ComponentFactory.create_store(config)
        tree = SourceTree.load(config.state_path, store=store)
        embedder = embedder or ComponentFactory.create_embedder(config)
        if config.knowledge_graph_enabled and extractor is None:
            extractor = ComponentFactory.create_extractor(config)

        registry = JobRegistry()
        bus = EventBus()
        processor = ItemProcessor(
            tree,
            store,
            embedder,
            extractor=extractor,
            knowledge_graph=config.knowledge_graph_enabled,
        )
        walker = FolderWalker(
            tree,
            store,
            processor,
            concurrency=config.concurrency,
            delay_seconds=config.window_delay_seconds,
            progress=progress,
            progress_interval=config.progress_interval,
        )
        composer = Composer(
            tree,
            processor,
            walker,
            registry,
            concurrency=config.concurrency,
            delay_seconds=config.window_delay_seconds,
            progress=progress,
            progress_interval=config.progress_interval,
        )
        coordinator = IndexingCoordinator(
            store,
            registry,
            bus,
            None if config.remote_embeddings else embedder,
            remote_embeddings=config.remote_embeddings,
            concurrency=config.concurrency,
            delay_seconds=config.window_delay_seconds,
            progress_interval=config.progress_interval,
            safety_timeout_seconds=config.safety_timeout_seconds,
            abort_grace_seconds=config.abort_grace_seconds,
            remote_embedding_timeout_seconds=config.remote_embedding_timeout_seconds,
            progress=progress,
        )
        worker = None
        if config.remote_embeddings:
            worker = EmbeddingWorker(
                bus, store, embedder, retry_delay=config.subscription_retry_seconds
            )

        logger.debug(
            f"Created components for {config.workspace} "
            f"(embeddings: {embedder!r}, knowledge graph: {config.knowledge_graph_enabled})"
        )
        return ComponentBundle(
            config=config,
            store=store,
            tree=tree,
            embedder=embedder,
            registry=registry,
            bus=bus,
            processor=processor,
            walker=walker,
            composer=composer,
            coordinator=coordinator,
            worker=worker,
        )

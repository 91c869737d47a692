"""Remote embedding listener.

Runs in the context that holds the embedding backend. It consumes
``NoteEmbeddingRequest`` events, embeds the note content and publishes a
``NoteEmbeddingResponse`` (or hands it to a reply callback). A dropped
subscription is re-established after a fixed delay.
"""

import asyncio
from collections.abc import Callable

from loguru import logger

from ..config.defaults import DEFAULT_SUBSCRIPTION_RETRY_SECONDS
from .embeddings import EmbeddingProvider
from .events import (
    NOTE_EMBEDDING_RESULT_TOPIC,
    NOTE_NEEDS_EMBEDDING_TOPIC,
    EventBus,
    NoteEmbeddingRequest,
    NoteEmbeddingResponse,
)
from .store import DurableStore

Reply = Callable[[NoteEmbeddingResponse], object]


class EmbeddingWorker:
    """Fulfils note embedding requests published by a coordinator."""

    def __init__(
        self,
        bus: EventBus,
        store: DurableStore,
        embedder: EmbeddingProvider,
        reply: Reply | None = None,
        retry_delay: float = DEFAULT_SUBSCRIPTION_RETRY_SECONDS,
    ) -> None:
        """Initialize worker.

        Args:
            bus: Event bus carrying the requests
            store: Store used to read the note content
            embedder: Embedding backend available in this context
            reply: Where responses go (default: publish on the result topic)
            retry_delay: Pause before resubscribing after a subscription error
        """
        self.bus = bus
        self.store = store
        self.embedder = embedder
        self.reply = reply or self._publish_reply
        self.retry_delay = retry_delay
        self.handled = 0
        self._task: asyncio.Task | None = None

    def _publish_reply(self, response: NoteEmbeddingResponse) -> None:
        self.bus.publish(NOTE_EMBEDDING_RESULT_TOPIC, response)

    async def handle(self, request: NoteEmbeddingRequest) -> NoteEmbeddingResponse:
        """Embed one requested note and send the response."""
        response = NoteEmbeddingResponse(request_id=request.request_id, note_id=request.note_id)
        try:
            content = await self.store.get_content(request.path)
        except Exception as e:
            logger.warning(f"Failed to read note {request.path}: {e}")
            response.error = f"Failed to read note: {e}"
        else:
            if not content or not content.strip():
                response.error = "No content found"
            else:
                response.vector = await self.embedder.embed(content)
                if response.vector is None:
                    response.error = "Failed to generate embedding"

        self.handled += 1
        self.reply(response)
        return response

    async def run(self) -> None:
        """Listen for requests until the bus closes or the task is cancelled."""
        logger.info("Embedding worker listening for note embedding requests")
        await self.bus.listen(NOTE_NEEDS_EMBEDDING_TOPIC, self.handle, self.retry_delay)

    def start(self) -> asyncio.Task:
        """Run the listener as a background task.

        The task subscribes on its first step, so requests published after
        the caller next yields to the loop are received.
        """
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

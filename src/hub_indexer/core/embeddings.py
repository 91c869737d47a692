"""Embedding generation for Hub Indexer.

Every backend exposes ``async embed(text) -> list[float] | None``. A backend
failure (network, HTTP status, model load, empty vector) is logged and
reported as ``None``; the item processor turns that into an
``embedding_failed`` outcome. Backends are interchangeable and selected by
name through ``create_embedding_provider``.
"""

import asyncio
import hashlib
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import httpx
import orjson
from loguru import logger

from ..config.defaults import (
    EMBEDDING_PROVIDERS,
    get_default_embedding_model,
)
from .exceptions import ConfigError, EmbeddingError


class EmbeddingProvider(ABC):
    """Text -> vector capability."""

    name: str = "base"

    def __init__(self, model: str) -> None:
        self.model = model

    async def embed(self, text: str) -> list[float] | None:
        """Embed one text, returning ``None`` on any backend failure."""
        try:
            vector = await self._embed(text)
        except Exception as e:
            logger.warning(f"{self.name} embedding failed ({self.model}): {e}")
            return None

        if not vector:
            logger.warning(f"{self.name} returned an empty embedding ({self.model})")
            return None
        return vector

    @abstractmethod
    async def _embed(self, text: str) -> list[float]:
        """Backend call. May raise; ``embed()`` converts failures to ``None``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


class _HttpEmbeddingProvider(EmbeddingProvider):
    TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        model: str,
        endpoint: str,
        timeout: float = TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(model)
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.endpoint, headers=self._headers(), json=payload
                )
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise EmbeddingError(
                f"{self.name} embedding request timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"{self.name} API error (HTTP {e.response.status_code})",
                {"status_code": e.response.status_code, "model": self.model},
            ) from e


class OpenAIEmbeddingProvider(_HttpEmbeddingProvider):
    """OpenAI ``/v1/embeddings`` (also works with compatible servers via ``base_url``)."""

    name = "openai"
    API_ENDPOINT = "https://api.openai.com/v1/embeddings"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = _HttpEmbeddingProvider.TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            model or get_default_embedding_model("openai"),
            base_url or self.API_ENDPOINT,
            timeout,
            transport,
        )
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ConfigError(
                "OpenAI embeddings selected but OPENAI_API_KEY not found. "
                "Please set OPENAI_API_KEY environment variable."
            )

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), "Authorization": f"Bearer {self.api_key}"}

    async def _embed(self, text: str) -> list[float]:
        data = await self._post({"model": self.model, "input": text})
        items = data.get("data") or []
        if not items:
            raise EmbeddingError("OpenAI response contained no embedding data")
        return items[0].get("embedding") or []


class OllamaEmbeddingProvider(_HttpEmbeddingProvider):
    """Local Ollama server ``/api/embeddings``."""

    name = "ollama"
    DEFAULT_HOST = "http://localhost:11434"

    def __init__(
        self,
        model: str | None = None,
        host: str | None = None,
        timeout: float = _HttpEmbeddingProvider.TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        host = host or os.environ.get("OLLAMA_HOST") or self.DEFAULT_HOST
        super().__init__(
            model or get_default_embedding_model("ollama"),
            f"{host.rstrip('/')}/api/embeddings",
            timeout,
            transport,
        )

    async def _embed(self, text: str) -> list[float]:
        data = await self._post({"model": self.model, "prompt": text})
        return data.get("embedding") or []


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """In-process sentence-transformers model (``pip install hub-indexer[local]``).

    The model is loaded on first use and encoding runs in a worker thread so
    the event loop keeps scheduling other items.
    """

    name = "sentence-transformers"

    def __init__(self, model: str | None = None, device: str | None = None) -> None:
        super().__init__(model or get_default_embedding_model("sentence-transformers"))
        self.device = device or os.environ.get("HUB_INDEXER_DEVICE") or "cpu"
        self._model = None
        self._load_lock = asyncio.Lock()

    def _load(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise EmbeddingError(
                "sentence-transformers is not installed. "
                "Install with: pip install 'hub-indexer[local]'"
            ) from e

        logger.info(f"Loading embedding model {self.model} on {self.device}")
        return SentenceTransformer(self.model, device=self.device)

    async def _ensure_model(self):
        async with self._load_lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load)
        return self._model

    async def _embed(self, text: str) -> list[float]:
        model = await self._ensure_model()
        vector = await asyncio.to_thread(
            model.encode, text, convert_to_numpy=True, show_progress_bar=False
        )
        return vector.tolist()


class EmbeddingCache:
    """LRU cache for embeddings with disk persistence."""

    def __init__(self, cache_dir: Path, max_size: int = 1000) -> None:
        """Initialize embedding cache.

        Args:
            cache_dir: Directory to store cached embeddings
            max_size: Maximum number of embeddings to keep in memory
        """
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_size = max_size
        self._memory_cache: dict[str, list[float]] = {}
        self._access_order: list[str] = []  # For LRU eviction
        self._cache_hits = 0
        self._cache_misses = 0

    def _hash_content(self, namespace: str, content: str) -> str:
        return hashlib.sha256(f"{namespace}\0{content}".encode()).hexdigest()[:16]

    async def get_embedding(self, namespace: str, content: str) -> list[float] | None:
        """Get cached embedding for content embedded by ``namespace`` (model name)."""
        cache_key = self._hash_content(namespace, content)

        if cache_key in self._memory_cache:
            self._cache_hits += 1
            self._touch(cache_key)
            return self._memory_cache[cache_key]

        cache_file = self.cache_dir / f"{cache_key}.json"
        if cache_file.exists():
            try:
                async with aiofiles.open(cache_file, "rb") as f:
                    embedding = orjson.loads(await f.read())
                self._add_to_memory_cache(cache_key, embedding)
                self._cache_hits += 1
                return embedding
            except (OSError, orjson.JSONDecodeError) as e:
                logger.warning(f"Failed to load cached embedding: {e}")

        self._cache_misses += 1
        return None

    async def store_embedding(
        self, namespace: str, content: str, embedding: list[float]
    ) -> None:
        cache_key = self._hash_content(namespace, content)
        self._add_to_memory_cache(cache_key, embedding)

        cache_file = self.cache_dir / f"{cache_key}.json"
        try:
            async with aiofiles.open(cache_file, "wb") as f:
                await f.write(orjson.dumps(embedding))
        except OSError as e:
            logger.warning(f"Failed to cache embedding: {e}")

    def _touch(self, cache_key: str) -> None:
        self._access_order.remove(cache_key)
        self._access_order.append(cache_key)

    def _add_to_memory_cache(self, cache_key: str, embedding: list[float]) -> None:
        if cache_key in self._memory_cache:
            self._touch(cache_key)
            self._memory_cache[cache_key] = embedding
            return

        # If cache is full, evict least recently used
        if len(self._memory_cache) >= self.max_size:
            lru_key = self._access_order.pop(0)
            del self._memory_cache[lru_key]

        self._memory_cache[cache_key] = embedding
        self._access_order.append(cache_key)

    def get_cache_stats(self) -> dict[str, Any]:
        """Get cache performance statistics."""
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = self._cache_hits / total_requests if total_requests > 0 else 0.0
        disk_files = (
            len(list(self.cache_dir.glob("*.json"))) if self.cache_dir.exists() else 0
        )

        return {
            "memory_cache_size": len(self._memory_cache),
            "max_cache_size": self.max_size,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate": round(hit_rate, 3),
            "disk_cache_files": disk_files,
        }


class CachedEmbeddingProvider(EmbeddingProvider):
    """Wraps a provider with an ``EmbeddingCache`` keyed by model and content."""

    def __init__(self, provider: EmbeddingProvider, cache: EmbeddingCache) -> None:
        super().__init__(provider.model)
        self.name = provider.name
        self.provider = provider
        self.cache = cache

    async def embed(self, text: str) -> list[float] | None:
        namespace = f"{self.provider.name}:{self.model}"
        cached = await self.cache.get_embedding(namespace, text)
        if cached is not None:
            return cached

        vector = await self.provider.embed(text)
        if vector is not None:
            await self.cache.store_embedding(namespace, text, vector)
        return vector

    async def _embed(self, text: str) -> list[float]:
        return await self.provider._embed(text)


def create_embedding_provider(
    name: str,
    model: str | None = None,
    cache_dir: Path | None = None,
    cache_size: int = 1000,
    **kwargs: Any,
) -> EmbeddingProvider:
    """Create an embedding provider by backend name.

    Args:
        name: One of ``EMBEDDING_PROVIDERS``
        model: Model override (defaults per provider)
        cache_dir: Wrap the provider in an ``EmbeddingCache`` stored here
        cache_size: Maximum in-memory cache entries
        **kwargs: Backend-specific options (api_key, host, transport, device...)

    Raises:
        ConfigError: Unknown backend or missing credentials
    """
    provider: EmbeddingProvider
    if name == "openai":
        provider = OpenAIEmbeddingProvider(model=model, **kwargs)
    elif name == "ollama":
        provider = OllamaEmbeddingProvider(model=model, **kwargs)
    elif name == "sentence-transformers":
        provider = SentenceTransformerEmbeddingProvider(model=model, **kwargs)
    else:
        raise ConfigError(
            f"Unknown embedding provider: {name}",
            {"available": list(EMBEDDING_PROVIDERS)},
        )

    logger.debug(f"Created embedding provider {provider!r}")

    if cache_dir is not None:
        return CachedEmbeddingProvider(provider, EmbeddingCache(cache_dir, cache_size))
    return provider

"""Typed exception hierarchy and failure taxonomy for hub-indexer.

Hierarchy
---------
HubIndexerError (base)
├── StoreError                – durable store calls (content, vectors, graph)
├── EmbeddingError            – embedding backend errors
├── ExtractionError           – structured extraction (language model) errors
│   ├── ExtractionFailedError     – retries exhausted without parseable output
│   └── ExtractionCancelledError  – abort observed between attempts
├── IndexingError             – pipeline / run-level failures
├── SourceTreeError           – hub bookkeeping errors
│   ├── HubNotFoundError
│   ├── ItemNotFoundError
│   └── DuplicateItemError
└── ConfigError               – configuration / validation errors

Per-item failures inside a run are never raised to the caller of a run.
They are reported as an ``ItemOutcome`` carrying one of the ``FailureKind``
values below, and written into the item's status.
"""

from enum import StrEnum
from typing import Any


class FailureKind(StrEnum):
    """Why a single item (or a corpus job) did not reach ``ready``."""

    CONTENT_UNAVAILABLE = "content_unavailable"
    EMBEDDING_FAILED = "embedding_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    EXTRACTION_FAILED = "extraction_failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class HubIndexerError(Exception):
    """Base exception for hub-indexer."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Store layer ─────────────────────────────────────────────────────────


class StoreError(HubIndexerError):
    """Durable store operation failed."""

    pass


# ── Embedding layer ─────────────────────────────────────────────────────


class EmbeddingError(HubIndexerError):
    """Embedding generation errors."""

    pass


# ── Extraction layer ────────────────────────────────────────────────────


class ExtractionError(HubIndexerError):
    """Structured extraction (language model) errors.

    Raised by ``LLMClient.complete()`` for transport/API failures.
    """

    pass


class ExtractionFailedError(ExtractionError):
    """Model output could not be parsed after all attempts."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.attempts = attempts


class ExtractionCancelledError(ExtractionError):
    """Abort token was set while extraction was still retrying."""

    pass


# ── Indexing layer ──────────────────────────────────────────────────────


class IndexingError(HubIndexerError):
    """Run-level indexing failure (discovery, scheduler fault)."""

    pass


# ── Source tree ─────────────────────────────────────────────────────────


class SourceTreeError(HubIndexerError):
    """Hub bookkeeping errors."""

    pass


class HubNotFoundError(SourceTreeError):
    """No hub with the requested id."""

    pass


class ItemNotFoundError(SourceTreeError):
    """No file, folder or note with the requested id in the hub."""

    pass


class DuplicateItemError(SourceTreeError):
    """An item id is already used within the hub."""

    pass


# ── Configuration layer ─────────────────────────────────────────────────


class ConfigError(HubIndexerError):
    """Configuration / validation errors."""

    pass

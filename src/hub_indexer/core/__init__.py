"""Core functionality for Hub Indexer."""

from .cancellation import AbortToken
from .exceptions import (
    ConfigError,
    DuplicateItemError,
    EmbeddingError,
    ExtractionCancelledError,
    ExtractionError,
    ExtractionFailedError,
    FailureKind,
    HubIndexerError,
    HubNotFoundError,
    IndexingError,
    ItemNotFoundError,
    SourceTreeError,
    StoreError,
)

__all__ = [
    "AbortToken",
    # Exceptions
    "ConfigError",
    "DuplicateItemError",
    "EmbeddingError",
    "ExtractionCancelledError",
    "ExtractionError",
    "ExtractionFailedError",
    "FailureKind",
    "HubIndexerError",
    "HubNotFoundError",
    "IndexingError",
    "ItemNotFoundError",
    "SourceTreeError",
    "StoreError",
]

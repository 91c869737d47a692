"""Configuration for Hub Indexer."""

from .settings import ConfigManager, IndexerConfig

__all__ = ["ConfigManager", "IndexerConfig"]

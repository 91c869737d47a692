"""Hub Indexer - ingestion and indexing pipeline for hubs of files, folders and notes."""

__version__ = "0.3.0"
__author__ = "Hub Indexer contributors"

from .core.exceptions import HubIndexerError

__all__ = ["HubIndexerError", "__version__"]

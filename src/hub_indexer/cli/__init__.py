"""Command line interface for Hub Indexer."""

"""CLI commands for Hub Indexer."""

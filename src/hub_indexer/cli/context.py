"""Workspace resolution shared by CLI commands."""

from pathlib import Path

import typer

from ..config.settings import ConfigManager, IndexerConfig
from ..core.exceptions import ConfigError, HubNotFoundError
from ..core.factory import ComponentBundle, ComponentFactory
from ..core.models import Hub
from ..core.progress import ProgressSink
from ..core.source_tree import SourceTree


def get_workspace(ctx: typer.Context) -> Path:
    return (ctx.obj.get("workspace") if ctx.obj else None) or Path.cwd()


def load_config(workspace: Path) -> IndexerConfig:
    """Load the workspace configuration.

    Raises:
        ConfigError: If the workspace was never initialized or the config is invalid
    """
    manager = ConfigManager(workspace)
    if not manager.is_initialized():
        raise ConfigError(
            f"Workspace not initialized at {workspace}. Run 'hub-indexer init' first."
        )
    return manager.load()


def load_tree(config: IndexerConfig) -> SourceTree:
    """Load hub state without building the embedding pipeline."""
    return SourceTree.load(
        config.state_path, store=ComponentFactory.create_store(config)
    )


def load_components(
    config: IndexerConfig, progress: ProgressSink | None = None
) -> ComponentBundle:
    return ComponentFactory.create_components(config, progress=progress)


def resolve_hub(tree: SourceTree, name_or_id: str) -> Hub:
    hub = tree.find_hub(name_or_id)
    if hub is None:
        raise HubNotFoundError(f"Hub not found: {name_or_id}", {"hub": name_or_id})
    return hub

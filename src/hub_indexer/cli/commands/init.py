"""Init command for Hub Indexer CLI."""

from pathlib import Path

import typer
from loguru import logger

from ...config.defaults import EMBEDDING_PROVIDERS
from ...config.settings import ConfigManager, IndexerConfig
from ...core.exceptions import HubIndexerError
from ..context import get_workspace
from ..output import print_error, print_info, print_success, print_tip


def init(
    ctx: typer.Context,
    notes_dir: Path | None = typer.Option(
        None,
        "--notes-dir",
        "-n",
        help="Root directory of the notes corpus",
        exists=True,
        file_okay=False,
        dir_okay=True,
    ),
    embedding_provider: str = typer.Option(
        "openai",
        "--embedding-provider",
        "-e",
        help=f"Embedding backend ({', '.join(EMBEDDING_PROVIDERS)})",
    ),
    knowledge_graph: bool = typer.Option(
        False,
        "--knowledge-graph/--no-knowledge-graph",
        help="Extract entities into the knowledge graph while composing",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
) -> None:
    """🚀 Initialize a hub-indexer workspace in the current directory."""
    try:
        workspace = get_workspace(ctx).resolve()
        manager = ConfigManager(workspace)
        if manager.is_initialized() and not force:
            print_info(f"Workspace already initialized at {workspace}")
            print_tip("Use --force to overwrite the configuration")
            return

        config = IndexerConfig(
            workspace=workspace,
            notes_dir=notes_dir.resolve() if notes_dir else None,
            embedding_provider=embedding_provider,
            knowledge_graph_enabled=knowledge_graph,
        )
        manager.save(config)
        print_success(f"Initialized workspace at {workspace}")
        print_tip("Create a hub with: hub-indexer hub create NAME")
    except HubIndexerError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except ValueError as e:
        print_error(f"Invalid option: {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.error(f"Initialization failed: {e}")
        print_error(f"Initialization failed: {e}")
        raise typer.Exit(1)

"""Hub management commands for Hub Indexer CLI."""

import asyncio
from pathlib import Path

import typer
from loguru import logger

from ...core.exceptions import HubIndexerError
from ...core.models import FileSource, FolderSource, NoteSource
from ..context import get_workspace, load_config, load_tree, resolve_hub
from ..output import (
    print_error,
    print_hub,
    print_hubs,
    print_info,
    print_success,
)

hub_app = typer.Typer(name="hub", help="📚 Manage hubs and their sources")


def _fail(action: str, e: Exception) -> None:
    if not isinstance(e, HubIndexerError):
        logger.error(f"Failed to {action}: {e}")
    print_error(f"Failed to {action}: {e}")
    raise typer.Exit(1)


@hub_app.command("create")
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Hub name"),
) -> None:
    """Create an empty hub."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        hub = tree.create_hub(name)
        tree.save(config.state_path)
        print_success(f"Created hub [bold]{hub.name}[/bold] ({hub.id})")
    except Exception as e:
        _fail("create hub", e)


@hub_app.command("list")
def list_hubs(ctx: typer.Context) -> None:
    """List every hub with its status."""
    try:
        config = load_config(get_workspace(ctx))
        hubs = load_tree(config).hubs()
        if not hubs:
            print_info("No hubs yet. Create one with 'hub-indexer hub create NAME'")
            return
        print_hubs(hubs)
    except Exception as e:
        _fail("list hubs", e)


@hub_app.command("show")
def show(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
) -> None:
    """Show the files, folders and notes of a hub."""
    try:
        config = load_config(get_workspace(ctx))
        print_hub(resolve_hub(load_tree(config), hub))
    except Exception as e:
        _fail("show hub", e)


@hub_app.command("add-file")
def add_file(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    path: Path = typer.Argument(
        ..., exists=True, file_okay=True, dir_okay=False, readable=True, help="File to add"
    ),
) -> None:
    """Link a file into a hub."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        file = tree.add_file(target.id, FileSource.from_path(str(path.resolve())))
        tree.save(config.state_path)
        print_success(f"Added file {file.name} to {target.name} ({file.id})")
    except Exception as e:
        _fail("add file", e)


@hub_app.command("add-folder")
def add_folder(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    path: Path = typer.Argument(
        ..., exists=True, file_okay=False, dir_okay=True, readable=True, help="Folder to add"
    ),
) -> None:
    """Link a folder into a hub (its files are discovered when composing)."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        folder = tree.add_folder(target.id, FolderSource(path=str(path.resolve())))
        tree.save(config.state_path)
        print_success(f"Added folder {folder.path} to {target.name} ({folder.id})")
    except Exception as e:
        _fail("add folder", e)


@hub_app.command("add-note")
def add_note(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    content: str = typer.Option(..., "--content", "-c", help="Note text"),
    title: str | None = typer.Option(None, "--title", "-t", help="Note title"),
) -> None:
    """Add a free-text note to a hub."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        note = tree.add_note(target.id, NoteSource(title=title, content=content))
        tree.save(config.state_path)
        print_success(f"Added note {note.title or '(untitled)'} to {target.name} ({note.id})")
    except Exception as e:
        _fail("add note", e)


@hub_app.command("remove")
def remove(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    item_id: str = typer.Argument(..., help="ID of the file, folder or note"),
) -> None:
    """Remove an item from a hub and delete its derived index entries."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        asyncio.run(tree.remove_item(target.id, item_id))
        tree.save(config.state_path)
        print_success(f"Removed {item_id} from {target.name}")
    except Exception as e:
        _fail("remove item", e)


@hub_app.command("rename")
def rename(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a hub."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        tree.rename_hub(target.id, name)
        tree.save(config.state_path)
        print_success(f"Renamed {target.name} to {name}")
    except Exception as e:
        _fail("rename hub", e)


@hub_app.command("bookmark")
def bookmark(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
) -> None:
    """Toggle the bookmark flag of a hub."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        bookmarked = tree.toggle_bookmark(target.id)
        tree.save(config.state_path)
        print_success(f"{target.name} {'bookmarked' if bookmarked else 'unbookmarked'}")
    except Exception as e:
        _fail("toggle bookmark", e)


@hub_app.command("delete")
def delete(
    ctx: typer.Context,
    hub: str = typer.Argument(..., help="Hub name or ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a hub and every derived index entry of its items."""
    try:
        config = load_config(get_workspace(ctx))
        tree = load_tree(config)
        target = resolve_hub(tree, hub)
        if not yes and not typer.confirm(f"Delete hub {target.name}?"):
            print_info("Cancelled")
            return
        asyncio.run(tree.delete_hub(target.id))
        tree.save(config.state_path)
        print_success(f"Deleted hub {target.name}")
    except Exception as e:
        _fail("delete hub", e)

"""CLI entry point for VaultSync.

Commands:
    vaultsync tree    — Print the vault tree
    vaultsync index   — Full index of the vault
    vaultsync watch   — Keep the index in sync with the vault until Ctrl-C
    vaultsync rename  — Rename a file or directory and its index entries
    vaultsync mv      — Cascade an already-performed move through the index
    vaultsync rm      — Delete a file or directory and its index entries
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.tree import Tree

from vaultsync import __version__

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from vaultsync.config import Settings
    from vaultsync.indexer.store import ChromaIndex
    from vaultsync.vault.models import FileInfoNode

console = Console()

CLI_WINDOW = "cli"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _create_index(settings: Settings) -> ChromaIndex:
    """Create the ChromaDB index, exiting if no embedding key is configured."""
    from vaultsync.indexer import ChromaIndex, Chunker, Embedder

    api_key = settings.embedding_api_key
    if not api_key:
        console.print(
            "[red]✗[/red] Embedding API key not set."
            " Set VAULTSYNC_OPENAI_API_KEY or VAULTSYNC_VOYAGE_API_KEY."
        )
        sys.exit(1)

    embedder = Embedder(settings.embedding, api_key)
    return ChromaIndex(settings.chroma, embedder, Chunker(settings.chunking.max_tokens))


def _run_operation(
    ctx: click.Context,
    operation: Callable[..., Awaitable[Any]],
    *args: Any,
) -> None:
    """Open the vault without a watcher, run one gateway operation, close."""
    from vaultsync.config import load_settings
    from vaultsync.errors import VaultSyncError
    from vaultsync.sync import OperationGateway, SyncCoordinator

    settings = load_settings(ctx.obj.get("config_path"))
    index = _create_index(settings)

    async def _main() -> None:
        coordinator = SyncCoordinator.from_settings(settings)
        await coordinator.open_vault(CLI_WINDOW, settings.vault.path, index, watch=False)
        try:
            await operation(OperationGateway(coordinator), *args)
        finally:
            await coordinator.shutdown()

    try:
        asyncio.run(_main())
    except (VaultSyncError, OSError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)


def _render(node: FileInfoNode, branch: Tree) -> None:
    for child in node.children:
        if child.is_directory:
            _render(child, branch.add(f"[bold blue]{child.name}/[/bold blue]"))
        else:
            branch.add(child.name)


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """VaultSync — keep a vault and its content index in sync."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.pass_context
def tree(ctx: click.Context) -> None:
    """Print the vault tree (hidden entries omitted)."""
    from vaultsync.config import load_settings
    from vaultsync.vault.paths import build_tree

    settings = load_settings(ctx.obj.get("config_path"))
    root = build_tree(settings.vault.path)
    view = Tree(f"[bold]{root.path}[/bold]")
    _render(root, view)
    console.print(view)
    console.print(f"{len(root.iter_files())} files")


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Full index of every visible file in the vault."""
    from vaultsync.config import load_settings
    from vaultsync.vault.paths import vault_files

    settings = load_settings(ctx.obj.get("config_path"))
    files = vault_files(settings.vault.path, settings.vault.excluded_folders)

    async def _index_all(gateway: Any) -> None:
        total = 0
        skipped = 0
        with console.status(f"Indexing {len(files)} files..."):
            for path in files:
                try:
                    total += await gateway.dispatch(CLI_WINDOW, "reindex", path)
                except UnicodeDecodeError:
                    skipped += 1
        console.print(f"[green]✓[/green] Indexed {total} entries from {len(files) - skipped} files")
        if skipped:
            console.print(f"  Skipped {skipped} non-UTF-8 files")

    _run_operation(ctx, _index_all)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the vault and keep the index in sync until interrupted."""
    from vaultsync.config import load_settings
    from vaultsync.sync import SyncCoordinator
    from vaultsync.vault.events import FileIndexedEvent, FileRemovedEvent, VaultEventBus

    settings = load_settings(ctx.obj.get("config_path"))
    index = _create_index(settings)
    event_bus = VaultEventBus()

    async def _on_indexed(event: FileIndexedEvent) -> None:
        console.print(f"  [cyan]indexed[/cyan] {event.path} ({event.entries} entries)")

    async def _on_removed(event: FileRemovedEvent) -> None:
        for path in event.paths:
            console.print(f"  [red]removed[/red] {path}")

    event_bus.subscribe(FileIndexedEvent, _on_indexed)  # type: ignore[arg-type]
    event_bus.subscribe(FileRemovedEvent, _on_removed)  # type: ignore[arg-type]

    console.print(f"[green]✓[/green] Watching {settings.vault.path}")
    console.print(f"  Debounce: {settings.watch.debounce_ms}ms")
    console.print(f"  Hash stability: {settings.watch.hash_stability_check}")

    async def _run_watch() -> None:
        coordinator = SyncCoordinator.from_settings(settings, event_bus=event_bus)
        await coordinator.open_vault(CLI_WINDOW, settings.vault.path, index)
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await coordinator.shutdown()

    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\nWatch stopped.")


@cli.command()
@click.argument("old_path")
@click.argument("new_path")
@click.pass_context
def rename(ctx: click.Context, old_path: str, new_path: str) -> None:
    """Rename OLD_PATH to NEW_PATH and move its index entries."""

    async def _rename(gateway: Any) -> None:
        await gateway.dispatch(CLI_WINDOW, "rename", old_path, new_path)
        console.print(f"[green]✓[/green] Renamed {old_path} → {new_path}")

    _run_operation(ctx, _rename)


@cli.command()
@click.argument("source")
@click.argument("destination")
@click.pass_context
def mv(ctx: click.Context, source: str, destination: str) -> None:
    """Re-key index entries after SOURCE was moved to DESTINATION."""

    async def _move(gateway: Any) -> None:
        await gateway.dispatch(CLI_WINDOW, "move", source, destination)
        console.print(f"[green]✓[/green] Index entries moved {source} → {destination}")

    _run_operation(ctx, _move)


@cli.command()
@click.argument("path")
@click.pass_context
def rm(ctx: click.Context, path: str) -> None:
    """Delete PATH (recursively) and its index entries."""

    async def _delete(gateway: Any) -> None:
        await gateway.dispatch(CLI_WINDOW, "delete", path)
        console.print(f"[green]✓[/green] Deleted {path}")

    _run_operation(ctx, _delete)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""Sync coordinator — serialized filesystem + index operations per vault.

Every operation resolves the caller's ``VaultContext`` and runs under that
context's lock, so at most one operation per vault is in flight. Blocking
filesystem calls run in worker threads; index calls are awaited. The index
is only touched after the filesystem action it mirrors, and an index
failure never unwinds a completed filesystem action.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from vaultsync.config import WatchConfig
from vaultsync.errors import NotFoundError
from vaultsync.sync.context import VaultContext, WindowRegistry
from vaultsync.sync.rename import RenameStrategy, select_rename_strategy
from vaultsync.vault.events import (
    FileIndexedEvent,
    FileRemovedEvent,
    FileRenamedEvent,
    TreeRefreshEvent,
    VaultEventBus,
)
from vaultsync.vault.paths import (
    build_tree,
    create_file_recursive,
    ensure_directory,
    list_directory,
    list_files_recursive,
    read_text,
)
from vaultsync.vault.security import resolve_in_vault
from vaultsync.vault.watch_handler import IncrementalWatchHandler
from vaultsync.vault.watcher import DirectoryWatcher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from vaultsync.config import Settings
    from vaultsync.indexer.client import IndexClient
    from vaultsync.vault.models import FileInfoNode, IndexEntry

logger = logging.getLogger(__name__)


def _read_for_index(path: Path) -> tuple[str, bytes]:
    data = path.read_bytes()
    return data.decode("utf-8"), data


class SyncCoordinator:
    """Owns window → vault bindings and runs every vault operation.

    Usage:
        coordinator = SyncCoordinator(WindowRegistry(), DirectoryWatcher())
        await coordinator.open_vault("main", vault_root, index)
        await coordinator.rename("main", old, new)
        await coordinator.shutdown()
    """

    def __init__(
        self,
        registry: WindowRegistry,
        watcher: DirectoryWatcher,
        rename_strategy: RenameStrategy | None = None,
        event_bus: VaultEventBus | None = None,
        watch_config: WatchConfig | None = None,
    ) -> None:
        self.registry = registry
        self.watcher = watcher
        self.rename_strategy = rename_strategy or select_rename_strategy()
        self.event_bus = event_bus or VaultEventBus()
        self.watch_config = watch_config or WatchConfig()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        event_bus: VaultEventBus | None = None,
    ) -> SyncCoordinator:
        return cls(
            registry=WindowRegistry(),
            watcher=DirectoryWatcher(settings.vault.excluded_folders),
            rename_strategy=select_rename_strategy(
                settings.sync.lock_on_watch, settings.sync.close_timeout_seconds
            ),
            event_bus=event_bus,
            watch_config=settings.watch,
        )

    # ------------------------------------------------------------------
    # Vault lifecycle
    # ------------------------------------------------------------------

    async def open_vault(
        self,
        window_id: str,
        vault_root: Path,
        index: IndexClient,
        *,
        watch: bool = True,
    ) -> VaultContext:
        """Bind *vault_root* to *window_id*, replacing any previous binding."""
        if not vault_root.is_dir():
            raise NotFoundError(vault_root)
        await self.close_vault(window_id)

        context = VaultContext(
            window_id=window_id,
            vault_root=vault_root.resolve(),
            index=index,
            watch_enabled=watch,
        )
        context.watch_handler = IncrementalWatchHandler(self.watch_config, self, context)
        self.registry.bind(context)
        if watch:
            self.start_watching(context)
        logger.info("Window %s opened vault %s", window_id, context.vault_root)
        return context

    async def close_vault(self, window_id: str) -> None:
        """Tear down the window's watcher and drop its binding."""
        context = self.registry.unbind(window_id)
        if context is None:
            return
        async with context.lock:
            if context.watch_handler is not None:
                context.watch_handler.close()
            handle, context.watcher_handle = context.watcher_handle, None
            if handle is not None:
                await self.watcher.close(handle)
        logger.info("Window %s closed vault %s", window_id, context.vault_root)

    async def shutdown(self) -> None:
        for context in self.registry.contexts:
            await self.close_vault(context.window_id)

    def start_watching(self, context: VaultContext) -> None:
        """Install a fresh watcher rooted at the vault."""
        if context.watch_handler is None:
            context.watch_handler = IncrementalWatchHandler(self.watch_config, self, context)
        context.watcher_handle = self.watcher.watch(
            context.vault_root, context.watch_handler.handle_change
        )

    def _ensure_watcher(self, context: VaultContext) -> None:
        """Restore a watcher lost to a failed rename (degraded mode)."""
        handle = context.watcher_handle
        if not context.watch_enabled:
            return
        if handle is None or handle.closed:
            logger.warning("Restoring watcher for %s", context.vault_root)
            self.start_watching(context)
        elif not handle.is_watching(context.vault_root):
            logger.warning("Re-adding vault root to watcher for %s", context.vault_root)
            self.watcher.add(handle, context.vault_root)

    async def refresh_tree(self, context: VaultContext) -> FileInfoNode:
        """Re-scan the vault and broadcast the tree. Caller holds the lock."""
        tree = await asyncio.to_thread(build_tree, context.vault_root)
        context.tree = tree
        await self.event_bus.publish(
            TreeRefreshEvent(context.window_id, tree=tuple(tree.children))
        )
        return tree

    async def refresh(self, context: VaultContext) -> None:
        """Serialized tree refresh, used by the watch handler."""
        async with context.lock:
            if self.registry.find(context.window_id) is context:
                await self.refresh_tree(context)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _optional(self, window_id: str) -> AsyncIterator[VaultContext | None]:
        """Serialize against the window's vault if one is bound."""
        context = self.registry.find(window_id)
        if context is None:
            yield None
            return
        async with context.lock:
            yield context

    @contextlib.asynccontextmanager
    async def _mutating(self, window_id: str, *paths: Path) -> AsyncIterator[VaultContext]:
        """Hold the vault lock and claim *paths* for an index-touching operation."""
        context = self.registry.resolve(window_id)
        async with context.lock:
            self._ensure_watcher(context)
            with context.operating_on(*paths):
                yield context

    @staticmethod
    def _path(context: VaultContext | None, path: str | Path) -> Path:
        if context is None:
            return Path(path)
        return resolve_in_vault(path, context.vault_root)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def list_tree(self, window_id: str) -> list[FileInfoNode]:
        """Top-level entries of the window's vault; empty if none is bound."""
        async with self._optional(window_id) as context:
            if context is None:
                return []
            tree = await asyncio.to_thread(build_tree, context.vault_root)
            context.tree = tree
            return list(tree.children)

    async def read_file(self, window_id: str, path: str | Path) -> str:
        async with self._optional(window_id) as context:
            return await asyncio.to_thread(read_text, self._path(context, path))

    async def exists(self, window_id: str, path: str | Path) -> bool:
        """Whether *path* exists. Never raises."""
        async with self._optional(window_id) as context:
            target = Path(path) if context is None else context.vault_root / path
            try:
                return await asyncio.to_thread(target.exists)
            except (OSError, ValueError):
                logger.debug("exists(%s) failed in window %s", path, window_id)
                return False

    async def is_directory(self, window_id: str, path: str | Path) -> bool:
        async with self._optional(window_id) as context:
            target = self._path(context, path)
            try:
                info = await asyncio.to_thread(target.stat)
            except FileNotFoundError:
                raise NotFoundError(target) from None
            return stat.S_ISDIR(info.st_mode)

    async def list_directory(self, window_id: str, path: str | Path) -> list[str]:
        async with self._optional(window_id) as context:
            return await asyncio.to_thread(list_directory, self._path(context, path))

    # ------------------------------------------------------------------
    # Write operations (no index side; the watcher picks these up)
    # ------------------------------------------------------------------

    async def write_file(self, window_id: str, path: str | Path, content: str) -> None:
        async with self._optional(window_id) as context:
            await asyncio.to_thread(create_file_recursive, self._path(context, path), content)

    async def create_file(self, window_id: str, path: str | Path, content: str = "") -> None:
        async with self._optional(window_id) as context:
            await asyncio.to_thread(create_file_recursive, self._path(context, path), content)

    async def create_directory(self, window_id: str, path: str | Path) -> None:
        async with self._optional(window_id) as context:
            await asyncio.to_thread(ensure_directory, self._path(context, path))

    # ------------------------------------------------------------------
    # Index-touching operations
    # ------------------------------------------------------------------

    async def delete(self, window_id: str, path: str | Path) -> None:
        """Remove a file or directory and its index entries.

        Missing paths are a no-op. Filesystem removal errors are logged and
        swallowed; completion means the index no longer holds the paths.
        """
        context = self.registry.resolve(window_id)
        target = self._path(context, path)
        async with self._mutating(window_id, target) as context:
            try:
                info = await asyncio.to_thread(target.stat)
            except OSError:
                logger.debug("Delete of missing path %s ignored", target)
                return

            if stat.S_ISDIR(info.st_mode):
                keys = await asyncio.to_thread(list_files_recursive, target)
                try:
                    await asyncio.to_thread(shutil.rmtree, target)
                except OSError:
                    logger.exception("Failed to remove directory %s", target)
            else:
                keys = [target]
                try:
                    await asyncio.to_thread(target.unlink)
                except OSError:
                    logger.exception("Failed to remove file %s", target)

            if context.watch_handler is not None:
                context.watch_handler.forget(target)
            await context.index.delete_by_paths(keys)
            logger.info("Deleted %s (%d index keys)", target, len(keys))

        await self.event_bus.publish(FileRemovedEvent(window_id, paths=tuple(keys)))

    async def rename(self, window_id: str, old_path: str | Path, new_path: str | Path) -> None:
        """Rename a file or directory through the platform rename protocol."""
        context = self.registry.resolve(window_id)
        old, new = self._path(context, old_path), self._path(context, new_path)
        async with self._mutating(window_id, old, new) as context:
            await self.rename_strategy.execute(self, context, old, new)
            if context.watch_handler is not None:
                context.watch_handler.forget(old)
            logger.info("Renamed %s → %s", old, new)

        await self.event_bus.publish(FileRenamedEvent(window_id, old_path=old, new_path=new))

    async def move(self, window_id: str, source: str | Path, destination: str | Path) -> None:
        """Cascade an already-performed filesystem move through the index."""
        context = self.registry.resolve(window_id)
        src, dest = self._path(context, source), self._path(context, destination)
        async with self._mutating(window_id, src, dest) as context:
            await context.index.orchestrate_move(src, dest)
            if context.watch_handler is not None:
                context.watch_handler.forget(src)

        await self.event_bus.publish(FileRenamedEvent(window_id, old_path=src, new_path=dest))

    async def reindex(self, window_id: str, path: str | Path) -> int:
        """Replace the index entries for *path* with ones from its current content."""
        context = self.registry.resolve(window_id)
        target = self._path(context, path)
        async with self._mutating(window_id, target) as context:
            entries = await self._reindex_locked(context, target)

        await self.event_bus.publish(FileIndexedEvent(window_id, path=target, entries=entries))
        return entries

    async def paths_as_entries(
        self, window_id: str, paths: list[str] | list[Path]
    ) -> list[IndexEntry]:
        """Derive (but do not store) index entries for files and directories."""
        context = self.registry.resolve(window_id)
        targets = [self._path(context, p) for p in paths]
        async with context.lock:
            return await context.index.bulk_convert(targets)

    async def _reindex_locked(self, context: VaultContext, target: Path) -> int:
        try:
            content, data = await asyncio.to_thread(_read_for_index, target)
        except FileNotFoundError:
            raise NotFoundError(target) from None
        entries = await context.index.upsert(target, content)
        if context.watch_handler is not None:
            context.watch_handler.mark_indexed(target, data)
        return entries

    # ------------------------------------------------------------------
    # Watcher-originated changes
    # ------------------------------------------------------------------

    async def apply_watched_change(self, context: VaultContext, path: Path) -> int | None:
        """Reindex a file the watcher saw change. ``None`` if skipped."""
        async with context.lock:
            if context.is_busy(path) or self.registry.find(context.window_id) is not context:
                return None
            try:
                entries = await self._reindex_locked(context, path)
            except NotFoundError:
                return None
        await self.event_bus.publish(FileIndexedEvent(context.window_id, path=path, entries=entries))
        return entries

    async def apply_watched_delete(self, context: VaultContext, path: Path) -> list[Path]:
        """Drop every entry at or below a path the watcher saw disappear."""
        async with context.lock:
            if self.registry.find(context.window_id) is not context:
                return []
            removed = await context.index.delete_under(path)
        if removed:
            await self.event_bus.publish(FileRemovedEvent(context.window_id, paths=tuple(removed)))
        return removed

    async def apply_watched_move(self, context: VaultContext, src: Path, dest: Path) -> None:
        async with context.lock:
            if self.registry.find(context.window_id) is not context:
                return
            await context.index.move_entries(src, dest)
        await self.event_bus.publish(
            FileRenamedEvent(context.window_id, old_path=src, new_path=dest)
        )

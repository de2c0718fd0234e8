"""Vault directory watcher — watchdog observer with suspend/resume/teardown.

Events are raised on watchdog's observer thread and handed to the asyncio
loop that called :meth:`DirectoryWatcher.watch` via ``call_soon_threadsafe``,
so ``on_change`` callbacks always run on the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from vaultsync.vault.paths import is_excluded

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FileChange:
    """A coarse change notification for one path under a watched root."""

    path: Path
    kind: str  # created | modified | deleted | moved
    is_directory: bool = False
    dest_path: Path | None = None


ChangeCallback: TypeAlias = "Callable[[FileChange], None]"


class _VaultEventHandler(FileSystemEventHandler):
    """Filters raw watchdog events and forwards them as ``FileChange``."""

    def __init__(
        self,
        vault_root: Path,
        excluded_folders: list[str],
        emit: ChangeCallback,
    ) -> None:
        self.vault_root = vault_root
        self.excluded = set(excluded_folders)
        self.emit = emit

    def _should_process(self, path: str) -> bool:
        return not is_excluded(Path(path), self.vault_root, self.excluded)

    def on_created(self, event: FileCreatedEvent | DirCreatedEvent) -> None:  # type: ignore[override]
        if self._should_process(event.src_path):
            logger.debug("Created: %s", event.src_path)
            self.emit(FileChange(Path(event.src_path), "created", event.is_directory))

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        # Directory mtime bumps carry no information the child events don't
        if not event.is_directory and self._should_process(event.src_path):
            logger.debug("Modified: %s", event.src_path)
            self.emit(FileChange(Path(event.src_path), "modified"))

    def on_deleted(self, event: FileDeletedEvent | DirDeletedEvent) -> None:  # type: ignore[override]
        if self._should_process(event.src_path):
            logger.debug("Deleted: %s", event.src_path)
            self.emit(FileChange(Path(event.src_path), "deleted", event.is_directory))

    def on_moved(self, event: FileMovedEvent | DirMovedEvent) -> None:  # type: ignore[override]
        src_ok = self._should_process(event.src_path)
        dest_ok = self._should_process(event.dest_path)
        if src_ok and dest_ok:
            logger.debug("Moved: %s → %s", event.src_path, event.dest_path)
            self.emit(
                FileChange(
                    Path(event.src_path),
                    "moved",
                    event.is_directory,
                    dest_path=Path(event.dest_path),
                )
            )
        elif src_ok:
            # Moved out of view: same as a delete
            self.emit(FileChange(Path(event.src_path), "deleted", event.is_directory))
        elif dest_ok:
            self.emit(FileChange(Path(event.dest_path), "created", event.is_directory))


@dataclass
class WatcherHandle:
    """A live observer over one vault root.

    Owned by exactly one ``VaultContext``.
    """

    root: Path
    observer: BaseObserver
    handler: _VaultEventHandler
    watches: dict[Path, ObservedWatch] = field(default_factory=dict)
    closed: bool = False

    def is_watching(self, path: Path) -> bool:
        return not self.closed and path in self.watches


class DirectoryWatcher:
    """Creates and controls watchdog observers for vault roots.

    Usage:
        watcher = DirectoryWatcher(excluded_folders=[".git"])
        handle = watcher.watch(vault_root, on_change)
        watcher.unwatch(handle, vault_root)   # suspend
        watcher.add(handle, vault_root)       # resume
        await watcher.close(handle)           # full teardown
    """

    def __init__(
        self,
        excluded_folders: list[str] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.excluded_folders = list(excluded_folders or [])
        self._observer_factory = observer_factory

    def watch(self, root: Path, on_change: ChangeCallback) -> WatcherHandle:
        """Start observing *root* recursively. Must be called on the event loop."""
        loop = asyncio.get_running_loop()

        def _emit(change: FileChange) -> None:
            if loop.is_closed():
                return
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(on_change, change)

        handler = _VaultEventHandler(root, self.excluded_folders, _emit)
        observer = self._observer_factory()
        handle = WatcherHandle(root=root, observer=observer, handler=handler)
        self.add(handle, root)
        observer.start()
        logger.info("Watching vault at %s", root)
        return handle

    def unwatch(self, handle: WatcherHandle, path: Path) -> None:
        """Stop observing *path*. No-op if it is not watched."""
        watch = handle.watches.pop(path, None)
        if watch is None:
            return
        with contextlib.suppress(KeyError):
            handle.observer.unschedule(watch)
        logger.debug("Unwatched %s", path)

    def add(self, handle: WatcherHandle, path: Path) -> None:
        """(Re)start observing *path*. No-op if already watched or missing."""
        if handle.closed or path in handle.watches:
            return
        if not path.exists():
            logger.warning("Cannot watch missing path: %s", path)
            return
        handle.watches[path] = handle.observer.schedule(handle.handler, str(path), recursive=True)
        logger.debug("Watching %s", path)

    async def close(self, handle: WatcherHandle) -> None:
        """Release every OS resource held by *handle*.

        Returns once the observer thread has fully stopped; awaiting this is
        the completion signal lock-on-watch platforms need before a rename.
        """
        if handle.closed:
            return
        handle.closed = True
        handle.watches.clear()
        handle.observer.unschedule_all()
        handle.observer.stop()
        await asyncio.to_thread(handle.observer.join)
        logger.info("Vault watcher stopped for %s", handle.root)

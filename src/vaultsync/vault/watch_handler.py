"""Incremental watch handler — debounced, hash-stable change processing.

Bridges ``DirectoryWatcher`` notifications for one vault back into the
``SyncCoordinator``. Key properties:

* **Debounce** — Coalesces rapid saves (editors fire several events per
  save) into a single processing pass after ``debounce_ms`` of silence.
* **Hash skip** — A file whose content hash matches the last indexed hash
  is not re-indexed, so duplicate notifications are harmless.
* **Hash stability** — Optionally re-hashes after a second ``debounce_ms``
  window and only proceeds once two consecutive hashes match.
* **Explicit-operation precedence** — Notifications for a path that an
  explicit operation currently owns are dropped; that operation already
  updates the index.
* **Tree refresh** — Every accepted change schedules one debounced re-scan.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import TYPE_CHECKING, Any

from vaultsync.vault.paths import is_hidden, list_files_recursive

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from pathlib import Path

    from vaultsync.config import WatchConfig
    from vaultsync.sync.context import VaultContext
    from vaultsync.sync.coordinator import SyncCoordinator
    from vaultsync.vault.watcher import FileChange

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    """SHA-256 of content, first 16 hex chars."""
    return hashlib.sha256(data).hexdigest()[:16]


def _file_content_hash(path: Path) -> str:
    return content_hash(path.read_bytes())


class IncrementalWatchHandler:
    """Processes watcher notifications for a single vault.

    Instantiate once per ``VaultContext``. :meth:`handle_change` is the
    watcher callback; it runs on the event loop and only schedules work.
    """

    def __init__(
        self,
        config: WatchConfig,
        coordinator: SyncCoordinator,
        context: VaultContext,
    ) -> None:
        self._config = config
        self._coordinator = coordinator
        self._context = context

        # Debounce state: path → scheduled asyncio.TimerHandle
        self._pending: dict[Path, asyncio.TimerHandle] = {}

        # Last-indexed content hash per file path
        self._hash_cache: dict[Path, str] = {}

        self._refresh_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_change(self, change: FileChange) -> None:
        """Entry point called by ``DirectoryWatcher`` on the event loop."""
        if self._context.is_busy(change.path) or (
            change.dest_path is not None and self._context.is_busy(change.dest_path)
        ):
            logger.debug("Ignoring %s %s: explicit operation in flight", change.kind, change.path)
            return

        self._schedule_refresh()

        if change.kind == "moved" and change.dest_path is not None:
            self._cancel_pending(change.path)
            self._spawn(self._process_move(change.path, change.dest_path))
        elif change.kind == "deleted":
            self._debounce(change.path, self._process_delete)
        elif change.is_directory:
            # A directory that appears already populated gets no per-file events
            if change.kind == "created":
                self._spawn(self._process_new_directory(change.path))
        else:
            self._debounce(change.path, self._process_change)

    def mark_indexed(self, path: Path, data: bytes) -> None:
        """Record content indexed by an explicit operation."""
        self._hash_cache[path] = content_hash(data)

    def forget(self, root: Path) -> list[Path]:
        """Drop cached hashes for *root* and everything below it."""
        gone = [p for p in self._hash_cache if p == root or p.is_relative_to(root)]
        for p in gone:
            del self._hash_cache[p]
        return gone

    def close(self) -> None:
        """Cancel every scheduled timer and running task."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None
        for task in self._tasks:
            task.cancel()

    @property
    def pending_count(self) -> int:
        """Number of paths awaiting debounce resolution."""
        return len(self._pending)

    @property
    def indexed_hashes(self) -> dict[Path, str]:
        """Read-only view of tracked content hashes."""
        return dict(self._hash_cache)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_pending(self, path: Path) -> None:
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()

    def _debounce(self, path: Path, process: Callable[[Path], Coroutine[Any, Any, None]]) -> None:
        self._cancel_pending(path)
        loop = asyncio.get_running_loop()

        def _fire(p: Path = path) -> None:
            self._pending.pop(p, None)
            self._spawn(process(p))

        self._pending[path] = loop.call_later(self._config.debounce_ms / 1000.0, _fire)

    def _schedule_refresh(self) -> None:
        if self._refresh_timer is not None:
            return
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._refresh_timer = None
            self._spawn(self._coordinator.refresh(self._context))

        self._refresh_timer = loop.call_later(self._config.refresh_debounce_ms / 1000.0, _fire)

    # ------------------------------------------------------------------
    # Internal processing
    # ------------------------------------------------------------------

    async def _process_change(self, path: Path) -> None:
        """Debounce-triggered handler for created/modified files."""
        if not path.is_file():
            logger.debug("File vanished before processing: %s", path)
            return

        try:
            current_hash = await asyncio.to_thread(_file_content_hash, path)
        except OSError:
            logger.warning("Cannot read %s — skipping", path)
            return

        if self._hash_cache.get(path) == current_hash:
            logger.debug("Content unchanged for %s — skipping", path)
            return

        if self._config.hash_stability_check:
            await asyncio.sleep(self._config.debounce_ms / 1000.0)
            if not path.is_file():
                return
            try:
                recheck_hash = await asyncio.to_thread(_file_content_hash, path)
            except OSError:
                logger.warning("Cannot re-read %s — skipping", path)
                return
            if recheck_hash != current_hash:
                logger.debug("Hash unstable for %s — re-debouncing", path)
                self._debounce(path, self._process_change)
                return

        try:
            entries = await self._coordinator.apply_watched_change(self._context, path)
        except Exception:
            logger.exception("Failed to index %s", path)
            return

        if entries is not None:
            self._hash_cache[path] = current_hash
            logger.info("Watch: indexed %s (%d entries)", path.name, entries)

    async def _process_delete(self, path: Path) -> None:
        """Debounce-triggered handler for deleted files and directories.

        Directory deletes arrive as a single event when a folder is moved out
        of view, so the index is swept by prefix rather than by known files.
        """
        if path.exists():
            # Re-created within the debounce window
            self._debounce(path, self._process_change)
            return

        self.forget(path)
        try:
            removed = await self._coordinator.apply_watched_delete(self._context, path)
        except Exception:
            logger.exception("Failed to delete index entries for %s", path)
            return
        logger.info("Watch: deleted %s (%d indexed files)", path.name, len(removed))

    async def _process_move(self, src: Path, dest: Path) -> None:
        """Handler for moves performed outside the application."""
        self.forget(src)
        try:
            await self._coordinator.apply_watched_move(self._context, src, dest)
        except Exception:
            logger.exception("Failed to move index entries %s → %s", src, dest)
            return
        logger.info("Watch: moved %s → %s", src.name, dest.name)

    async def _process_new_directory(self, path: Path) -> None:
        try:
            files = await asyncio.to_thread(list_files_recursive, path)
        except OSError:
            logger.warning("Cannot list %s — skipping", path)
            return
        root = self._context.vault_root
        for file in files:
            if not any(is_hidden(part) for part in file.relative_to(root).parts):
                self._debounce(file, self._process_change)

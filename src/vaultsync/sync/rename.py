"""Rename protocol — a small state machine with two platform strategies.

Some platforms hold a lock on any path under active observation, so the
whole watcher must be torn down (and the teardown acknowledged) before the
rename can run. Others only need the vault root unscheduled for the
duration. The strategy is chosen once at startup.

States::

    IDLE → UNWATCHING → RENAMING → REINDEXING → IDLE
"""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from vaultsync.errors import PlatformLockError

if TYPE_CHECKING:
    from pathlib import Path

    from vaultsync.sync.context import VaultContext
    from vaultsync.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class RenameState(StrEnum):
    IDLE = "idle"
    UNWATCHING = "unwatching"
    RENAMING = "renaming"
    REINDEXING = "reindexing"


_TRANSITIONS: dict[RenameState, RenameState] = {
    RenameState.IDLE: RenameState.UNWATCHING,
    RenameState.UNWATCHING: RenameState.RENAMING,
    RenameState.RENAMING: RenameState.REINDEXING,
    RenameState.REINDEXING: RenameState.IDLE,
}


@dataclass
class PendingRename:
    """The single in-flight rename of a vault."""

    old_path: Path
    new_path: Path
    state: RenameState = RenameState.IDLE
    history: list[RenameState] = field(default_factory=lambda: [RenameState.IDLE])

    def advance(self, state: RenameState) -> None:
        expected = _TRANSITIONS[self.state]
        if state is not expected:
            raise RuntimeError(f"Illegal rename transition {self.state} → {state}")
        self.state = state
        self.history.append(state)
        logger.debug("Rename %s: %s", self.old_path.name, state)


class RenameStrategy(ABC):
    """Drives a ``PendingRename`` through its states.

    Subclasses decide how the watcher is suspended before the filesystem
    rename and how it is brought back afterwards.
    """

    name = "base"

    async def execute(
        self,
        coordinator: SyncCoordinator,
        context: VaultContext,
        old_path: Path,
        new_path: Path,
    ) -> PendingRename:
        """Run the full rename. The caller must hold ``context.lock``.

        An ``OSError`` from the rename propagates; watcher suspension is not
        undone, leaving the vault unwatched until the next operation restores
        it. The index move only runs after the filesystem rename succeeded.
        """
        if context.pending_rename is not None:
            raise RuntimeError(f"Rename already in flight for window {context.window_id}")

        pending = PendingRename(old_path, new_path)
        context.pending_rename = pending
        try:
            pending.advance(RenameState.UNWATCHING)
            await self.suspend(coordinator, context)

            pending.advance(RenameState.RENAMING)
            await asyncio.to_thread(old_path.rename, new_path)
            await self.resume(coordinator, context)

            pending.advance(RenameState.REINDEXING)
            await context.index.move_entries(old_path, new_path)

            pending.advance(RenameState.IDLE)
        finally:
            context.pending_rename = None
        return pending

    @abstractmethod
    async def suspend(self, coordinator: SyncCoordinator, context: VaultContext) -> None: ...

    @abstractmethod
    async def resume(self, coordinator: SyncCoordinator, context: VaultContext) -> None: ...


class LockOnWatchRename(RenameStrategy):
    """Full watcher teardown before renaming; fresh watcher and re-scan after."""

    name = "lock-on-watch"

    def __init__(self, close_timeout_seconds: float = 10.0) -> None:
        self.close_timeout_seconds = close_timeout_seconds

    async def suspend(self, coordinator: SyncCoordinator, context: VaultContext) -> None:
        handle = context.watcher_handle
        if handle is None:
            return
        coordinator.watcher.unwatch(handle, context.vault_root)
        # The OS lock may be held per observer, so the whole instance goes
        context.watcher_handle = None
        try:
            await asyncio.wait_for(
                coordinator.watcher.close(handle), timeout=self.close_timeout_seconds
            )
        except TimeoutError:
            raise PlatformLockError(
                f"Watcher for {context.vault_root} did not close within "
                f"{self.close_timeout_seconds}s"
            ) from None

    async def resume(self, coordinator: SyncCoordinator, context: VaultContext) -> None:
        if context.watch_enabled:
            coordinator.start_watching(context)
        # Changes during the unwatched gap are reconciled by a full re-scan
        await coordinator.refresh_tree(context)


class LiveWatchRename(RenameStrategy):
    """Unschedule the vault root around the rename; keep the observer alive."""

    name = "live-watch"

    async def suspend(self, coordinator: SyncCoordinator, context: VaultContext) -> None:
        if context.watcher_handle is not None:
            coordinator.watcher.unwatch(context.watcher_handle, context.vault_root)

    async def resume(self, coordinator: SyncCoordinator, context: VaultContext) -> None:
        if context.watcher_handle is not None:
            coordinator.watcher.add(context.watcher_handle, context.vault_root)


def select_rename_strategy(
    lock_on_watch: bool | None = None,
    close_timeout_seconds: float = 10.0,
) -> RenameStrategy:
    """Pick the rename strategy for this process.

    ``lock_on_watch=None`` detects it: Windows locks watched paths.
    """
    if lock_on_watch is None:
        lock_on_watch = sys.platform == "win32"
    strategy: RenameStrategy
    if lock_on_watch:
        strategy = LockOnWatchRename(close_timeout_seconds)
    else:
        strategy = LiveWatchRename()
    logger.info("Rename strategy: %s", strategy.name)
    return strategy

"""Per-window vault bindings and the registry that resolves them."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vaultsync.errors import ContextNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from vaultsync.indexer.client import IndexClient
    from vaultsync.sync.rename import PendingRename
    from vaultsync.vault.models import FileInfoNode
    from vaultsync.vault.watch_handler import IncrementalWatchHandler
    from vaultsync.vault.watcher import WatcherHandle

logger = logging.getLogger(__name__)


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a.is_relative_to(b) or b.is_relative_to(a)


@dataclass(eq=False)
class VaultContext:
    """Binding of one window to its vault, watcher, and index.

    The context is the unit of serialization: every operation for this vault
    holds ``lock`` for its full duration. ``watcher_handle`` is owned here
    and never shared; ``index`` is shared with the index engine.
    """

    window_id: str
    vault_root: Path
    index: IndexClient
    watcher_handle: WatcherHandle | None = None
    watch_handler: IncrementalWatchHandler | None = None
    watch_enabled: bool = True
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    in_flight: set[Path] = field(default_factory=set)
    pending_rename: PendingRename | None = None
    tree: FileInfoNode | None = None

    @contextlib.contextmanager
    def operating_on(self, *paths: Path) -> Iterator[None]:
        """Mark *paths* as owned by an explicit operation for the block."""
        added = [p for p in paths if p not in self.in_flight]
        self.in_flight.update(added)
        try:
            yield
        finally:
            self.in_flight.difference_update(added)

    def is_busy(self, path: Path) -> bool:
        """True if an explicit operation currently covers *path*."""
        return any(_overlaps(path, p) for p in self.in_flight)


class WindowRegistry:
    """Maps window ids to their ``VaultContext``."""

    def __init__(self) -> None:
        self._contexts: dict[str, VaultContext] = {}

    def bind(self, context: VaultContext) -> VaultContext | None:
        """Bind *context* to its window, returning any context it replaced."""
        previous = self._contexts.get(context.window_id)
        self._contexts[context.window_id] = context
        logger.debug("Window %s bound to %s", context.window_id, context.vault_root)
        return previous

    def unbind(self, window_id: str) -> VaultContext | None:
        return self._contexts.pop(window_id, None)

    def find(self, window_id: str) -> VaultContext | None:
        return self._contexts.get(window_id)

    def resolve(self, window_id: str) -> VaultContext:
        """Return the context bound to *window_id* or raise ``ContextNotFoundError``."""
        context = self._contexts.get(window_id)
        if context is None:
            raise ContextNotFoundError(window_id)
        return context

    @property
    def contexts(self) -> list[VaultContext]:
        return list(self._contexts.values())

    def __len__(self) -> int:
        return len(self._contexts)

"""Typed vault events and async event bus for decoupled change propagation.

The sync coordinator and watch handler publish here; the UI layer (tree
view, similar-files sidebar) subscribes without coupling to either.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from time import time
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from pathlib import Path
    from typing import Any

    from vaultsync.vault.models import FileInfoNode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """Base event, scoped to the window that owns the vault."""

    window_id: str
    timestamp: float = field(default_factory=time, kw_only=True)


@dataclass(frozen=True, slots=True)
class FileIndexedEvent(VaultEvent):
    """A file was (re)indexed from its current content."""

    path: Path
    entries: int = 0


@dataclass(frozen=True, slots=True)
class FileRemovedEvent(VaultEvent):
    """Index entries for one or more paths were removed."""

    paths: tuple[Path, ...] = ()


@dataclass(frozen=True, slots=True)
class FileRenamedEvent(VaultEvent):
    """A path (file or directory) now lives somewhere else."""

    old_path: Path
    new_path: Path


@dataclass(frozen=True, slots=True)
class TreeRefreshEvent(VaultEvent):
    """The vault was re-scanned; ``tree`` holds its top-level entries."""

    tree: tuple[FileInfoNode, ...] = ()


# Union of all subscribable event types
AnyVaultEvent: TypeAlias = (
    "FileIndexedEvent | FileRemovedEvent | FileRenamedEvent | TreeRefreshEvent"
)

# Callback signature: async fn(event) -> None
EventCallback: TypeAlias = "Callable[[AnyVaultEvent], Coroutine[Any, Any, None]]"


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class VaultEventBus:
    """Async publish/subscribe bus for vault change events.

    Subscribers register for specific event types. Publishing dispatches
    to all matching subscribers concurrently via ``asyncio.gather``.
    Subscriber errors are logged and do not propagate.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type[AnyVaultEvent], list[EventCallback]] = {}

    def subscribe(
        self,
        event_type: type[AnyVaultEvent],
        callback: EventCallback,
    ) -> None:
        """Register *callback* for events of *event_type*."""
        self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(
            "Subscriber registered: %s → %s",
            event_type.__name__,
            callback.__qualname__,
        )

    def unsubscribe(
        self,
        event_type: type[AnyVaultEvent],
        callback: EventCallback,
    ) -> None:
        """Remove *callback* from *event_type* subscribers."""
        subs = self._subscribers.get(event_type, [])
        with contextlib.suppress(ValueError):
            subs.remove(callback)

    async def publish(self, event: AnyVaultEvent) -> None:
        """Dispatch *event* to all registered subscribers for its type."""
        subs = self._subscribers.get(type(event), [])
        if not subs:
            return

        async def _safe_call(cb: EventCallback) -> None:
            try:
                await cb(event)
            except Exception:
                logger.exception(
                    "Subscriber %s failed on %s",
                    cb.__qualname__,
                    type(event).__name__,
                )

        await asyncio.gather(*[_safe_call(cb) for cb in subs])

    @property
    def subscriber_count(self) -> int:
        return sum(len(v) for v in self._subscribers.values())

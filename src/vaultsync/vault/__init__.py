"""Vault operations — path helpers, tree models, watching, and change events."""

from vaultsync.vault.events import (
    FileIndexedEvent,
    FileRemovedEvent,
    FileRenamedEvent,
    TreeRefreshEvent,
    VaultEventBus,
)
from vaultsync.vault.models import FileInfoNode, IndexEntry
from vaultsync.vault.security import PathTraversalError, resolve_in_vault
from vaultsync.vault.watch_handler import IncrementalWatchHandler
from vaultsync.vault.watcher import DirectoryWatcher, FileChange, WatcherHandle

__all__ = [
    "DirectoryWatcher",
    "FileChange",
    "FileIndexedEvent",
    "FileInfoNode",
    "FileRemovedEvent",
    "FileRenamedEvent",
    "IncrementalWatchHandler",
    "IndexEntry",
    "PathTraversalError",
    "TreeRefreshEvent",
    "VaultEventBus",
    "WatcherHandle",
    "resolve_in_vault",
]

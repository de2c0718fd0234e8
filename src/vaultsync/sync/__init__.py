"""Sync engine — per-window vault contexts, rename protocol, and dispatch."""

from vaultsync.sync.context import VaultContext, WindowRegistry
from vaultsync.sync.coordinator import SyncCoordinator
from vaultsync.sync.gateway import OperationGateway, UnknownOperationError
from vaultsync.sync.rename import (
    LiveWatchRename,
    LockOnWatchRename,
    PendingRename,
    RenameState,
    RenameStrategy,
    select_rename_strategy,
)

__all__ = [
    "LiveWatchRename",
    "LockOnWatchRename",
    "OperationGateway",
    "PendingRename",
    "RenameState",
    "RenameStrategy",
    "SyncCoordinator",
    "UnknownOperationError",
    "VaultContext",
    "WindowRegistry",
    "select_rename_strategy",
]

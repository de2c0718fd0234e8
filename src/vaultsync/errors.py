"""Error taxonomy shared by the sync engine and its collaborators.

Filesystem permission/device failures are not wrapped: they surface as the
builtin ``OSError`` raised by the failing call.
"""

from __future__ import annotations


class VaultSyncError(Exception):
    """Base class for all VaultSync errors."""


class NotFoundError(VaultSyncError, FileNotFoundError):
    """A path was required to exist but does not."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"No such file or directory: '{path}'")


class IndexBackendError(VaultSyncError):
    """The content index rejected an upsert, delete, or move."""


class ContextNotFoundError(VaultSyncError, LookupError):
    """No vault is bound to the calling window."""

    def __init__(self, window_id: str) -> None:
        self.window_id = window_id
        super().__init__(f"No vault bound to window '{window_id}'")


class PlatformLockError(VaultSyncError):
    """Watcher teardown did not complete before a rename had to start."""

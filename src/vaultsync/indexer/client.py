"""The index capability the sync engine depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

    from vaultsync.vault.models import IndexEntry


@runtime_checkable
class IndexClient(Protocol):
    """Per-vault handle on the content index.

    Every method raises ``IndexBackendError`` when the backend rejects the
    operation; none of them silently drop data.
    """

    async def upsert(self, path: Path, content: str) -> int:
        """Replace all entries for *path* with entries derived from *content*."""
        ...

    async def delete_by_paths(self, paths: list[Path]) -> int:
        """Remove every entry whose path is in *paths*."""
        ...

    async def delete_under(self, root: Path) -> list[Path]:
        """Remove every entry at *root* or below it; return the paths removed."""
        ...

    async def move_entries(self, old_path: Path, new_path: Path) -> int:
        """Re-key entries at *old_path* (and below it) to *new_path*."""
        ...

    async def orchestrate_move(self, source: Path, destination: Path) -> int:
        """Cascade a file or directory move through the index."""
        ...

    async def bulk_convert(self, paths: list[Path]) -> list[IndexEntry]:
        """Derive entries for *paths* without storing them."""
        ...

    async def entries_for(self, path: Path) -> list[IndexEntry]:
        """Stored entries for *path*, ordered by chunk index."""
        ...

"""Path helpers — hidden-name filtering, recursive creation, and tree listing.

All functions here are synchronous and stateless. Callers running on the
event loop wrap them with ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from vaultsync.errors import NotFoundError
from vaultsync.vault.models import FileInfoNode

if TYPE_CHECKING:
    from collections.abc import Collection

logger = logging.getLogger(__name__)

# OS and editor artifacts that never belong in a listing
HIDDEN_NAMES = frozenset({".DS_Store", "Thumbs.db", "desktop.ini", "Icon\r"})
HIDDEN_PREFIXES = (".", "~$")
HIDDEN_SUFFIXES = (".swp", ".swo", "~")


def is_hidden(name: str) -> bool:
    """True if *name* is a dot-file or a known OS/editor artifact."""
    if name in HIDDEN_NAMES:
        return True
    return name.startswith(HIDDEN_PREFIXES) or name.endswith(HIDDEN_SUFFIXES)


def is_excluded(path: Path, root: Path, excluded_folders: Collection[str] = ()) -> bool:
    """True if *path* is outside *root* or any part below it is excluded or hidden."""
    try:
        rel = path.relative_to(root)
    except ValueError:
        return True
    return any(part in excluded_folders or is_hidden(part) for part in rel.parts)


def _modified(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime)


def build_tree(root: Path) -> FileInfoNode:
    """Recursively list *root* into a ``FileInfoNode`` tree.

    Hidden entries are skipped. Children are sorted by name so the order is
    stable across platforms.
    """
    if not root.exists():
        raise NotFoundError(root)
    return _build_node(root)


def _build_node(path: Path) -> FileInfoNode:
    if not path.is_dir():
        return FileInfoNode(path=path, name=path.name, modified=_modified(path))

    children: list[FileInfoNode] = []
    for child in sorted(path.iterdir(), key=lambda p: p.name):
        if is_hidden(child.name):
            continue
        try:
            children.append(_build_node(child))
        except FileNotFoundError:
            # Removed between iterdir() and stat()
            logger.debug("Entry vanished during scan: %s", child)
    return FileInfoNode(
        path=path,
        name=path.name,
        is_directory=True,
        children=children,
        modified=_modified(path),
    )


def ensure_directory(path: Path) -> None:
    """Create *path* and any missing ancestors. No-op if it already exists."""
    path.mkdir(parents=True, exist_ok=True)


def create_file_recursive(path: Path, content: str) -> None:
    """Write *content* to *path*, creating missing ancestor directories first.

    If the final write fails the ``OSError`` propagates and the directories
    created along the way are left in place.
    """
    ensure_directory(path.parent)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def read_text(path: Path) -> str:
    """Read a file as UTF-8, raising ``NotFoundError`` if it is missing."""
    try:
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    except FileNotFoundError:
        raise NotFoundError(path) from None


def list_directory(path: Path) -> list[str]:
    """Names directly inside *path*, hidden entries filtered out."""
    try:
        names = os.listdir(path)
    except FileNotFoundError:
        raise NotFoundError(path) from None
    return sorted(name for name in names if not is_hidden(name))


def list_files_recursive(path: Path) -> list[Path]:
    """Every regular file below *path*, hidden ones included."""
    files: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)
    return files


def file_infos_for_paths(paths: list[Path]) -> list[FileInfoNode]:
    """Expand files and directories into a flat list of visible file nodes."""
    nodes: list[FileInfoNode] = []
    for path in paths:
        if not path.exists():
            logger.warning("Skipping missing path: %s", path)
            continue
        nodes.extend(build_tree(path).iter_files())
    return nodes


def vault_files(root: Path, excluded_folders: Collection[str] = ()) -> list[Path]:
    """Every visible file in the vault outside the excluded folders.

    Matches what the watcher observes, so each returned path stays in sync.
    """
    excluded = set(excluded_folders)
    return [
        node.path
        for node in build_tree(root).iter_files()
        if not is_excluded(node.path, root, excluded)
    ]

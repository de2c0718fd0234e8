"""Data models for vault file trees and index entries."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path  # noqa: TC003 (pydantic needs Path at runtime)

from pydantic import BaseModel, Field, computed_field


class FileInfoNode(BaseModel):
    """One file-system entry in a vault tree.

    Trees are rebuilt by a full re-scan, never patched in place.
    """

    path: Path
    name: str
    is_directory: bool = False
    children: list[FileInfoNode] = Field(default_factory=list)
    modified: datetime = Field(default_factory=datetime.now)

    def iter_files(self) -> list[FileInfoNode]:
        """Flatten the subtree into its file (non-directory) nodes."""
        if not self.is_directory:
            return [self]
        files: list[FileInfoNode] = []
        for child in self.children:
            files.extend(child.iter_files())
        return files

    def find(self, path: Path) -> FileInfoNode | None:
        """Return the node at *path* within this subtree, if present."""
        if self.path == path:
            return self
        for child in self.children:
            found = child.find(path)
            if found is not None:
                return found
        return None


class IndexEntry(BaseModel):
    """A single chunk of a file as stored in the content index."""

    file_path: str
    file_name: str
    chunk_idx: int
    content: str
    heading: str = ""
    modified: str = ""
    embedding: list[float] | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def entry_id(self) -> str:
        """Unique identifier for this entry."""
        return f"{self.file_path}::{self.chunk_idx}"

    def to_chroma_metadata(self) -> dict[str, str | int]:
        """Convert to ChromaDB-compatible metadata dict."""
        return {
            "file_path": self.file_path,
            "file_name": self.file_name,
            "chunk_idx": self.chunk_idx,
            "heading": self.heading,
            "modified": self.modified,
        }

    def relocated(self, file_path: str) -> IndexEntry:
        """Copy of this entry keyed under a new file path."""
        return self.model_copy(
            update={"file_path": file_path, "file_name": Path(file_path).name}
        )

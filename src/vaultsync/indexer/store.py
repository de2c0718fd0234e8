"""Vector store — ChromaDB-backed implementation of the index client.

Entries are keyed ``"{file_path}::{chunk_idx}"`` with the file path kept in
metadata, so every path-based operation is a metadata filter followed by an
id-level write. Moves copy stored documents and embeddings to new ids; they
never re-embed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import chromadb
from chromadb.config import Settings as ChromaSettings
from chromadb.errors import ChromaError

from vaultsync.errors import IndexBackendError
from vaultsync.indexer.chunker import Chunker
from vaultsync.vault.models import IndexEntry
from vaultsync.vault.paths import file_infos_for_paths, read_text

if TYPE_CHECKING:
    from collections.abc import Iterator

    from vaultsync.config import ChromaConfig
    from vaultsync.indexer.embedder import TextEmbedder

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _backend_errors(action: str) -> Iterator[None]:
    """Re-raise ChromaDB failures as ``IndexBackendError``."""
    try:
        yield
    except IndexBackendError:
        raise
    except (ChromaError, ValueError) as e:
        raise IndexBackendError(f"Index {action} failed: {e}") from e


def _is_under(file_path: str, root: str) -> bool:
    return file_path == root or file_path.startswith(root.rstrip(os.sep) + os.sep)


class ChromaIndex:
    """Manages the vector index over a vault's files.

    Implements the ``IndexClient`` protocol. The public coroutines run the
    blocking ChromaDB calls in a worker thread.
    """

    def __init__(
        self,
        chroma_config: ChromaConfig,
        embedder: TextEmbedder,
        chunker: Chunker | None = None,
    ) -> None:
        self.config = chroma_config
        self.embedder = embedder
        self.chunker = chunker or Chunker()

        self._client = chromadb.PersistentClient(
            path=str(chroma_config.persist_dir),
            settings=ChromaSettings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=chroma_config.collection_name,
            metadata={"hnsw:space": chroma_config.distance_fn},
        )
        logger.info(
            "ChromaDB collection '%s' loaded (%d entries)",
            chroma_config.collection_name,
            self._collection.count(),
        )

    # ------------------------------------------------------------------
    # IndexClient
    # ------------------------------------------------------------------

    async def upsert(self, path: Path, content: str) -> int:
        return await asyncio.to_thread(self._upsert_sync, path, content)

    async def delete_by_paths(self, paths: list[Path]) -> int:
        return await asyncio.to_thread(self._delete_sync, paths)

    async def delete_under(self, root: Path) -> list[Path]:
        return await asyncio.to_thread(self._delete_under_sync, root)

    async def move_entries(self, old_path: Path, new_path: Path) -> int:
        return await asyncio.to_thread(self._relocate_sync, old_path, new_path)

    async def orchestrate_move(self, source: Path, destination: Path) -> int:
        moved = await asyncio.to_thread(self._relocate_sync, source, destination)
        logger.info("Moved %d entries %s → %s", moved, source, destination)
        return moved

    async def bulk_convert(self, paths: list[Path]) -> list[IndexEntry]:
        return await asyncio.to_thread(self._convert_sync, paths)

    async def entries_for(self, path: Path) -> list[IndexEntry]:
        return await asyncio.to_thread(self._entries_sync, path)

    @property
    def count(self) -> int:
        """Total number of stored entries."""
        return self._collection.count()

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _embed(self, entries: list[IndexEntry]) -> list[IndexEntry]:
        if not entries:
            return []
        vectors = self.embedder.embed_texts([e.content for e in entries])
        if len(vectors) != len(entries):
            raise IndexBackendError(
                f"Embedder returned {len(vectors)} vectors for {len(entries)} entries"
            )
        return [e.model_copy(update={"embedding": v}) for e, v in zip(entries, vectors, strict=True)]

    def _derive(self, path: Path, content: str) -> list[IndexEntry]:
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime).isoformat()
        except OSError:
            modified = ""
        return self._embed(self.chunker.chunk(path, content, modified=modified))

    def _write(self, entries: list[IndexEntry]) -> None:
        if not entries:
            return
        with _backend_errors("upsert"):
            self._collection.upsert(
                ids=[e.entry_id for e in entries],
                documents=[e.content for e in entries],
                embeddings=[e.embedding or [] for e in entries],  # type: ignore[arg-type]
                metadatas=[e.to_chroma_metadata() for e in entries],  # type: ignore[arg-type]
            )

    def _upsert_sync(self, path: Path, content: str) -> int:
        entries = self._derive(path, content)
        self._delete_sync([path])
        self._write(entries)
        logger.info("Re-indexed %d entries for %s", len(entries), path)
        return len(entries)

    def _delete_sync(self, paths: list[Path]) -> int:
        if not paths:
            return 0
        keys = [str(p) for p in paths]
        with _backend_errors("delete"):
            existing = self._collection.get(where={"file_path": {"$in": keys}})
            if existing["ids"]:
                self._collection.delete(ids=existing["ids"])
        logger.debug("Deleted %d entries for %d paths", len(existing["ids"]), len(keys))
        return len(existing["ids"])

    def _delete_under_sync(self, root: Path) -> list[Path]:
        key = str(root)
        with _backend_errors("delete"):
            listing = self._collection.get(include=["metadatas"])
            doomed: list[str] = []
            paths: set[str] = set()
            for entry_id, meta in zip(listing["ids"], listing["metadatas"] or [], strict=False):
                file_path = str(meta["file_path"])
                if _is_under(file_path, key):
                    doomed.append(entry_id)
                    paths.add(file_path)
            if doomed:
                self._collection.delete(ids=doomed)
        logger.debug("Deleted %d entries under %s", len(doomed), key)
        return [Path(p) for p in sorted(paths)]

    def _relocate_sync(self, old_path: Path, new_path: Path) -> int:
        old_key, new_key = str(old_path), str(new_path)
        if old_key == new_key:
            return 0

        with _backend_errors("move"):
            listing = self._collection.get(include=["metadatas"])
            moving_ids = [
                entry_id
                for entry_id, meta in zip(listing["ids"], listing["metadatas"] or [], strict=False)
                if _is_under(str(meta["file_path"]), old_key)
            ]
            if not moving_ids:
                return 0

            stored = self._collection.get(
                ids=moving_ids, include=["documents", "metadatas", "embeddings"]
            )
            relocated = [
                entry.relocated(new_key + entry.file_path[len(old_key) :])
                for entry in self._to_entries(stored)
            ]

            # Anything already stored at a destination path is stale
            targets = {e.file_path for e in relocated}
            moving = set(moving_ids)
            stale = [
                entry_id
                for entry_id, meta in zip(listing["ids"], listing["metadatas"] or [], strict=False)
                if meta["file_path"] in targets and entry_id not in moving
            ]
            if stale:
                self._collection.delete(ids=stale)

            self._write(relocated)
            new_ids = {e.entry_id for e in relocated}
            self._collection.delete(ids=[i for i in moving_ids if i not in new_ids])

        logger.debug("Relocated %d entries %s → %s", len(relocated), old_key, new_key)
        return len(relocated)

    def _convert_sync(self, paths: list[Path]) -> list[IndexEntry]:
        entries: list[IndexEntry] = []
        for node in file_infos_for_paths(paths):
            try:
                content = read_text(node.path)
            except (OSError, UnicodeDecodeError):
                logger.warning("Cannot read %s — skipping", node.path)
                continue
            entries.extend(
                self._embed(self.chunker.chunk(node.path, content, node.modified.isoformat()))
            )
        return entries

    def _entries_sync(self, path: Path) -> list[IndexEntry]:
        with _backend_errors("get"):
            stored = self._collection.get(
                where={"file_path": str(path)}, include=["documents", "metadatas"]
            )
        return self._to_entries(stored)

    @staticmethod
    def _to_entries(result: Any) -> list[IndexEntry]:
        """Flatten a ChromaDB ``get`` result into ordered entries."""
        docs = result.get("documents")
        metas = result.get("metadatas") or []
        embeddings = result.get("embeddings")
        entries: list[IndexEntry] = []
        for i, _entry_id in enumerate(result["ids"]):
            meta = metas[i]
            embedding = None
            if embeddings is not None and len(embeddings) > i:
                embedding = [float(x) for x in embeddings[i]]
            entries.append(
                IndexEntry(
                    file_path=str(meta["file_path"]),
                    file_name=str(meta.get("file_name", Path(str(meta["file_path"])).name)),
                    chunk_idx=int(meta["chunk_idx"]),
                    heading=str(meta.get("heading", "")),
                    modified=str(meta.get("modified", "")),
                    content=docs[i] if docs else "",
                    embedding=embedding,
                )
            )
        entries.sort(key=lambda e: (e.file_path, e.chunk_idx))
        return entries

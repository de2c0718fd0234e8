"""Indexer — chunking, embedding, and the ChromaDB-backed index client."""

from vaultsync.indexer.chunker import Chunker
from vaultsync.indexer.client import IndexClient
from vaultsync.indexer.embedder import Embedder, TextEmbedder
from vaultsync.indexer.store import ChromaIndex

__all__ = [
    "ChromaIndex",
    "Chunker",
    "Embedder",
    "IndexClient",
    "TextEmbedder",
]

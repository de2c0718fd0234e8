"""Embedding pipeline — batch-embeds index entries via OpenAI or Voyage."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from openai import OpenAI, OpenAIError

from vaultsync.errors import IndexBackendError

if TYPE_CHECKING:
    from vaultsync.config import EmbeddingConfig

logger = logging.getLogger(__name__)


class TextEmbedder(Protocol):
    """Anything that turns texts into vectors, one per text, in order."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class Embedder:
    """Generates embeddings for index entries.

    Supports OpenAI (text-embedding-3-small/large) and Voyage (voyage-3-lite)
    via the OpenAI-compatible API format.
    """

    def __init__(self, config: EmbeddingConfig, api_key: str) -> None:
        self.config = config
        if config.provider == "voyage":
            self._client = OpenAI(
                api_key=api_key,
                base_url="https://api.voyageai.com/v1",
            )
        else:
            self._client = OpenAI(api_key=api_key)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts via the API, batching internally."""
        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), self.config.batch_size):
            batch = texts[i : i + self.config.batch_size]
            try:
                response = self._client.embeddings.create(
                    model=self.config.model,
                    input=batch,
                )
            except OpenAIError as e:
                raise IndexBackendError(f"Embedding request failed: {e}") from e
            all_embeddings.extend(item.embedding for item in response.data)
            logger.debug(
                "Embedded batch %d-%d of %d",
                i,
                min(i + self.config.batch_size, len(texts)),
                len(texts),
            )

        return all_embeddings

"""Heading-aware chunking of file content into index entries."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import frontmatter

from vaultsync.vault.models import IndexEntry

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Heading pattern: matches ## Heading but not code blocks
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)


def strip_frontmatter(content: str) -> str:
    """Return *content* without its YAML frontmatter block, if any."""
    if not content.startswith("---"):
        return content
    try:
        return frontmatter.loads(content).content
    except Exception:
        # Malformed YAML: index the raw text rather than nothing
        logger.debug("Unparseable frontmatter, indexing raw content")
        return content


class Chunker:
    """Splits text files into ``IndexEntry`` chunks.

    Strategy:
    1. Split by headings
    2. If a section exceeds ``max_tokens``, split it by paragraphs
    3. Each chunk keeps its heading as context
    """

    def __init__(self, max_tokens: int = 500) -> None:
        self.max_tokens = max_tokens

    def chunk(self, path: Path, content: str, modified: str = "") -> list[IndexEntry]:
        body = strip_frontmatter(content)
        if not body.strip():
            return []

        pieces: list[tuple[str, str]] = []
        for heading, section in self._split_by_headings(body):
            section = section.strip()
            if not section and not heading:
                continue
            # Rough token estimate: ~4 chars per token
            if len(section) // 4 <= self.max_tokens:
                pieces.append((heading, section))
            else:
                pieces.extend((heading, part) for part in self._split_paragraphs(section))

        return [
            IndexEntry(
                file_path=str(path),
                file_name=path.name,
                chunk_idx=idx,
                heading=heading,
                content=f"{heading}\n\n{text}".strip() if heading else text,
                modified=modified,
            )
            for idx, (heading, text) in enumerate(pieces)
        ]

    def _split_paragraphs(self, section: str) -> list[str]:
        parts: list[str] = []
        current = ""
        for para in section.split("\n\n"):
            if len(current + para) // 4 > self.max_tokens and current:
                parts.append(current)
                current = para
            else:
                current = f"{current}\n\n{para}" if current else para
        if current.strip():
            parts.append(current)
        return parts

    def _split_by_headings(self, text: str) -> list[tuple[str, str]]:
        """Split text into (heading, content) pairs."""
        matches = list(HEADING_PATTERN.finditer(text))

        if not matches:
            return [("", text)]

        sections: list[tuple[str, str]] = []

        # Content before the first heading
        if matches[0].start() > 0:
            preamble = text[: matches[0].start()].strip()
            if preamble:
                sections.append(("", preamble))

        for i, match in enumerate(matches):
            heading = match.group(0).strip()
            start = match.end()
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            sections.append((heading, text[start:end].strip()))

        return sections

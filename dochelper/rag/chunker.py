"""Whitespace normalization and overlapping text chunking.

Implements character-based chunking to avoid tokenizer dependencies. Output
is deterministic for a given text and options, which keeps content-addressable
chunk IDs stable across indexing runs.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

import structlog

from dochelper import config

logger = structlog.get_logger()

# \s covers unicode whitespace, including the non-breaking space
_WHITESPACE_RE = re.compile(r"\s+")

SENTENCE_BREAK = ". "
# A sentence break must sit past this fraction of the window to be used
BOUNDARY_MIN_FRACTION = 0.6


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim the ends."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    chunk_index: int


class TextChunker:
    """Sliding-window chunker that prefers to end chunks on sentence breaks."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each window in characters (default from config)
            chunk_overlap: Overlap between consecutive chunks in characters
                (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Every window except the last is cut back to its last ". " when that
        break lies beyond 60% of the window. The start advances by
        ``max(1, len(chunk) - overlap)`` so the loop always makes progress.

        Args:
            text: Normalized text to chunk

        Returns:
            List of non-empty TextChunk objects in document order
        """
        if not text:
            return []

        text_length = len(text)
        chunks: List[TextChunk] = []
        start = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            window = text[start:end]

            if end < text_length:
                boundary = window.rfind(SENTENCE_BREAK)
                if boundary > self.chunk_size * BOUNDARY_MIN_FRACTION:
                    window = window[: boundary + 1]

            content = window.strip()
            if content:
                chunks.append(
                    TextChunk(
                        content=content,
                        char_start=start,
                        chunk_index=len(chunks),
                    )
                )

            if end >= text_length:
                break

            start += max(1, len(window) - self.chunk_overlap)

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks


def chunk_text(
    text: str,
    chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
) -> List[str]:
    """Chunk text and return only the chunk strings (convenience function)."""
    chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=overlap)
    return [chunk.content for chunk in chunker.chunk_text(text)]

"""Text chunking with overlap for RAG pipeline.

Character-based sliding window: a window of ``chunk_size`` characters
advances with stride ``chunk_size - overlap`` until its start passes the
end of the text. Splitting is purely positional, so the same input always
produces the same chunks.
"""
from collections import deque
from typing import List
from dataclasses import dataclass
import structlog

from docchat.errors import InvalidConfiguration

logger = structlog.get_logger()


@dataclass(frozen=True)
class Chunk:
    """A window of source text and where it started."""

    text: str
    source_offset: int
    chunk_index: int = 0

    @property
    def end_offset(self) -> int:
        return self.source_offset + len(self.text)


def validate_chunk_params(chunk_size: int, overlap: int) -> None:
    """Raise InvalidConfiguration unless chunk_size > 0 and 0 <= overlap < chunk_size."""
    if chunk_size <= 0:
        raise InvalidConfiguration(f"Chunk size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise InvalidConfiguration(
            f"Overlap ({overlap}) must be >= 0 and less than chunk size ({chunk_size})"
        )


def _windows(text: str, base_offset: int, chunk_size: int, overlap: int) -> List[Chunk]:
    stride = chunk_size - overlap
    return [
        Chunk(text=text[start : start + chunk_size], source_offset=base_offset + start)
        for start in range(0, len(text), stride)
    ]


def split_text(text: str, chunk_size: int, overlap: int) -> List[Chunk]:
    """Split text into overlapping fixed-size chunks.

    Args:
        text: Text to split
        chunk_size: Maximum chunk length in characters
        overlap: Characters shared by consecutive chunks

    Returns:
        Ordered list of Chunk objects (empty for empty text)

    Raises:
        InvalidConfiguration: If the parameters are out of range
    """
    validate_chunk_params(chunk_size, overlap)

    if not text:
        return []

    return resplit_chunks(_windows(text, 0, chunk_size, overlap), chunk_size, overlap)


def resplit_chunks(chunks: List[Chunk], chunk_size: int, overlap: int) -> List[Chunk]:
    """Re-split pieces longer than chunk_size and renumber the result.

    Oversized pieces are windowed again at their own offsets until every
    piece fits; empty pieces are dropped.

    Raises:
        InvalidConfiguration: If the parameters are out of range
    """
    validate_chunk_params(chunk_size, overlap)

    pending = deque(chunks)
    fitted: List[Chunk] = []

    while pending:
        chunk = pending.popleft()
        if len(chunk.text) > chunk_size:
            pending.extendleft(
                reversed(_windows(chunk.text, chunk.source_offset, chunk_size, overlap))
            )
            continue
        if chunk.text:
            fitted.append(chunk)

    return [
        Chunk(text=c.text, source_offset=c.source_offset, chunk_index=i)
        for i, c in enumerate(fitted)
    ]


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(self, chunk_size: int, chunk_overlap: int):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters
            chunk_overlap: Overlap between chunks in characters

        Raises:
            InvalidConfiguration: If overlap >= chunk_size or either is out of range
        """
        validate_chunk_params(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[Chunk]:
        """Split text into overlapping chunks."""
        chunks = split_text(text, self.chunk_size, self.chunk_overlap)

        if chunks:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.text) for c in chunks) // len(chunks),
            )

        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }

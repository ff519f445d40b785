"""
Deterministic text chunking for document indexing.

Chunking is designed to be:
- Deterministic: Same input always produces same chunks
- Lossless: The non-overlapping prefixes of the chunks rebuild the input
- Overlap-aware: Consecutive chunks share exactly `chunk_overlap` characters

Windows are cut on raw character offsets. Python strings index by code
point, so a window never splits a multi-byte sequence, but it does split
words and sentences. That is a known approximation.
"""
import logging
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)

# Default chunking parameters
DEFAULT_CHUNK_SIZE = 500  # characters
DEFAULT_CHUNK_OVERLAP = 50  # characters of overlap between chunks


@dataclass(frozen=True)
class TextChunk:
    """A chunk of text with its index."""
    index: int
    text: str
    start_char: int
    end_char: int

    @property
    def char_count(self) -> int:
        return len(self.text)


def chunk_count(text_length: int, chunk_size: int, chunk_overlap: int) -> int:
    """
    Number of chunks `chunk_text` produces for a text of the given length.

    ceil(max(length - overlap, 0) / step), at least 1 for non-empty text.
    """
    if text_length == 0:
        return 0
    step = chunk_size - chunk_overlap
    remaining = max(text_length - chunk_overlap, 0)
    return max(1, -(-remaining // step))


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[TextChunk]:
    """
    Split text into overlapping fixed-size windows.

    Windows start at offsets 0, step, 2*step, ... where
    step = chunk_size - chunk_overlap. Each window is
    text[start:start + chunk_size], clipped at the end of the text.
    Emission stops with the first window that reaches the end of the
    text, so the last chunk may be shorter than chunk_size.

    Args:
        text: The text to chunk
        chunk_size: Window size in characters
        chunk_overlap: Characters shared by consecutive windows

    Returns:
        List of TextChunk objects (empty for empty text)

    Raises:
        ValueError: If the parameters violate 0 <= overlap < chunk_size
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError(
            f"chunk_overlap must satisfy 0 <= overlap < chunk_size, "
            f"got overlap={chunk_overlap}, chunk_size={chunk_size}"
        )

    if not text:
        return []

    step = chunk_size - chunk_overlap
    text_length = len(text)
    chunks = []
    start = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)
        chunks.append(TextChunk(
            index=len(chunks),
            text=text[start:end],
            start_char=start,
            end_char=end,
        ))
        if end == text_length:
            break
        start += step

    logger.debug(f"Created {len(chunks)} chunks from {text_length} characters")

    return chunks

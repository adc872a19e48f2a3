"""
Document chunking for the ingestion pipeline.

Splits text into overlapping windows of ~800 tokens (1 token ~ 4 chars),
preferring natural boundaries in the back half of each window:

    1. Paragraph break ("\\n\\n")
    2. Sentence end (". ")
    3. Line break ("\\n")
    4. Hard cut at the window end
"""

import re
from dataclasses import dataclass
from typing import List

MAX_CHUNK_CHARS = 3200
CHUNK_OVERLAP_CHARS = 600

BREAK_SEPARATORS = ("\n\n", ". ", "\n")

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class Chunk:
    text: str
    chunk_index: int
    total_chunks: int


def normalize_text(text: str) -> str:
    """CRLF to LF, at most one blank line in a row, trimmed."""
    return _EXCESS_NEWLINES_RE.sub("\n\n", text.replace("\r\n", "\n")).strip()


def find_break(text: str, start: int, end: int, max_chars: int) -> int:
    """
    Index of the last character that belongs to the chunk starting at ``start``.

    A separator only counts when it starts past the middle of the window and
    ends before ``end``, so the chunk never exceeds ``max_chars``.
    """
    floor = start + max_chars // 2
    for separator in BREAK_SEPARATORS:
        position = text.rfind(separator, start, end)
        if position > floor:
            return position
    return end - 1


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS,
               overlap: int = CHUNK_OVERLAP_CHARS) -> List[Chunk]:
    """
    Split text into ordered, overlapping chunks.

    Args:
        text: Full document text
        max_chars: Upper bound on chunk length
        overlap: Characters repeated at the start of the next chunk

    Returns:
        Chunks with zero-based ``chunk_index`` and a shared ``total_chunks``
    """
    if not text or not text.strip():
        return []

    normalized = normalize_text(text)
    if len(normalized) <= max_chars:
        return [Chunk(text=normalized, chunk_index=0, total_chunks=1)]

    pieces = []
    start = 0
    while start < len(normalized):
        end = start + max_chars
        if end >= len(normalized):
            piece = normalized[start:].strip()
            if piece:
                pieces.append(piece)
            break

        break_at = find_break(normalized, start, end, max_chars)
        piece = normalized[start:break_at + 1].strip()
        if piece:
            pieces.append(piece)

        start = max(start + 1, break_at + 1 - overlap)

    total = len(pieces)
    return [Chunk(text=piece, chunk_index=i, total_chunks=total) for i, piece in enumerate(pieces)]

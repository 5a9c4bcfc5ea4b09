"""Chunking utilities."""

from __future__ import annotations

from typing import Iterator

from rulebook_rag.models.entities import Chunk, Source

CHUNK_SIZE = 800
CHUNK_OVERLAP = 100
LOOKBACK = 100

_PARAGRAPH_BREAK = "\n\n"
_SENTENCE_BREAKS = (". ", "! ", "? ")


def chunk_text(
    text: str,
    source: Source,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    lookback: int = LOOKBACK,
) -> list[Chunk]:
    """Split text into overlapping chunks that prefer paragraph and sentence ends."""
    _check_params(chunk_size, overlap, lookback)
    if not text.strip():
        return []

    chunks: list[Chunk] = []
    for start, end in _iter_windows(text, chunk_size, overlap, lookback):
        piece = text[start:end].strip()
        if piece:
            chunks.append(Chunk.create(source, piece, len(chunks)))
    return chunks


def _iter_windows(text: str, chunk_size: int, overlap: int, lookback: int) -> Iterator[tuple[int, int]]:
    length = len(text)
    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _snap_boundary(text, start, end, lookback)
        yield start, end
        if end >= length:
            break
        # at least one character of progress even when end - overlap <= start
        start = max(start + 1, end - overlap)


def _snap_boundary(text: str, start: int, end: int, lookback: int) -> int:
    search_from = max(end - lookback, start + 1)
    paragraph = text.rfind(_PARAGRAPH_BREAK, 0, end + len(_PARAGRAPH_BREAK))
    if paragraph >= search_from:
        return paragraph
    sentence = max(text.rfind(marker, 0, end + len(marker)) for marker in _SENTENCE_BREAKS)
    if sentence >= search_from:
        return sentence + 1
    return end


def _check_params(chunk_size: int, overlap: int, lookback: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")
    if lookback < 0:
        raise ValueError("lookback must be non-negative")


__all__ = ["chunk_text", "CHUNK_SIZE", "CHUNK_OVERLAP", "LOOKBACK"]

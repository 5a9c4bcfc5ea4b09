"""Internal dataclasses representing chunks and index state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from rulebook_rag.utils.ids import chunk_id, split_chunk_id


class Source(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(slots=True, frozen=True)
class Chunk:
    id: str
    source: Source
    text: str
    sequence_index: int

    @classmethod
    def create(cls, source: Source, text: str, sequence_index: int) -> "Chunk":
        return cls(
            id=chunk_id(source.value, sequence_index),
            source=source,
            text=text,
            sequence_index=sequence_index,
        )


@dataclass(slots=True, frozen=True)
class EmbeddedChunk:
    chunk: Chunk
    vector: tuple[float, ...]

    @property
    def dim(self) -> int:
        return len(self.vector)


@dataclass(slots=True, frozen=True)
class ScoredCandidate:
    chunk: Chunk
    score: float


@dataclass(slots=True, frozen=True)
class IndexMetadata:
    content_hash: str | None
    schema_version: str
    chunk_count: int
    index_key: str | None = None


def parse_chunk_id(identifier: str) -> tuple[Source, int]:
    """Recover ``(source, sequence_index)`` from a chunk id."""
    source, index = split_chunk_id(identifier)
    return Source(source), index


def unwrap(record: Chunk | EmbeddedChunk) -> Chunk:
    return record.chunk if isinstance(record, EmbeddedChunk) else record


__all__ = [
    "Source",
    "Chunk",
    "EmbeddedChunk",
    "ScoredCandidate",
    "IndexMetadata",
    "parse_chunk_id",
    "unwrap",
]

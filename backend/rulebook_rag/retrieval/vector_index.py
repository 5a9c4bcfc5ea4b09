"""In-memory vector index over embedded chunks."""

from __future__ import annotations

from typing import Sequence

from rulebook_rag.ingest.embeddings import dot_product
from rulebook_rag.models.entities import EmbeddedChunk, ScoredCandidate


class VectorIndex:
    """Brute-force cosine similarity over a cached snapshot of embedded chunks.

    ``load`` swaps the snapshot by reference, so a concurrent ``search`` keeps
    reading the tuple it started with.
    """

    def __init__(self, dim: int | None = None) -> None:
        self.dim = dim
        self._entries: tuple[EmbeddedChunk, ...] = ()

    @property
    def size(self) -> int:
        return len(self._entries)

    def load(self, entries: Sequence[EmbeddedChunk]) -> None:
        dim = entries[0].dim if entries else self.dim
        for entry in entries:
            if entry.dim != dim:
                raise ValueError("Vector dimension mismatch")
        self.dim = dim
        self._entries = tuple(entries)

    def search(self, vector: Sequence[float], top_k: int | None = None) -> list[ScoredCandidate]:
        entries = self._entries
        if not entries:
            return []
        if len(vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        scored = [
            ScoredCandidate(chunk=entry.chunk, score=dot_product(entry.vector, vector))
            for entry in entries
        ]
        # stable: ties keep chunk order
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored if top_k is None else scored[:top_k]


__all__ = ["VectorIndex"]

"""Interchangeable ranking backends sharing one scoring contract."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

from rulebook_rag.core.config import Settings
from rulebook_rag.core.errors import EmbeddingFailure
from rulebook_rag.db.index_store import IndexStore
from rulebook_rag.ingest.embeddings import Embedder, check_vector
from rulebook_rag.models.entities import Chunk, EmbeddedChunk, ScoredCandidate
from rulebook_rag.retrieval.keywords import extract_keywords
from rulebook_rag.retrieval.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class Scorer(ABC):
    """Builds a query representation and ranks stored chunks against it.

    ``score`` must return candidates sorted by descending score, ties in chunk
    order, so the selector can stop at the first sub-threshold candidate.
    """

    name: str = "base"

    def __init__(self, store: IndexStore, *, min_score: float, min_chunks: int, candidate_limit: int) -> None:
        self.store = store
        self.min_score = min_score
        self.min_chunks = min_chunks
        self.candidate_limit = candidate_limit

    @property
    def index_key(self) -> str:
        """Identifies what built the stored index; a different key forces a rebuild."""
        return self.name

    @abstractmethod
    def represent(self, query: str) -> Any | None:
        """Return the query representation, or ``None`` when nothing usable remains."""

    @abstractmethod
    def score(self, representation: Any) -> list[ScoredCandidate]:
        ...

    def prepare(self, chunks: Sequence[Chunk]) -> list[Chunk | EmbeddedChunk]:
        """Records to persist for ``chunks``."""
        return list(chunks)

    def load(self, records: Sequence[Chunk | EmbeddedChunk]) -> None:
        """Refresh in-memory state after a successful save."""
        return None

    def describe(self, representation: Any) -> list[str]:
        return []

    def warm_up(self) -> None:
        return None


class LexicalScorer(Scorer):
    """BM25 over the store's FTS5 index; every keyword must match."""

    name = "lexical"

    def represent(self, query: str) -> list[str] | None:
        keywords = extract_keywords(query)
        return keywords or None

    def score(self, representation: list[str]) -> list[ScoredCandidate]:
        candidates = self.store.query(representation, limit=self.candidate_limit)
        return sorted(candidates, key=lambda item: item.score, reverse=True)

    def describe(self, representation: list[str]) -> list[str]:
        return list(representation)


class VectorScorer(Scorer):
    """Cosine similarity between embedder vectors.

    Uses the in-memory index when it holds a snapshot, otherwise the store's
    nearest-neighbour search.
    """

    name = "vector"

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder,
        *,
        min_score: float,
        min_chunks: int,
        candidate_limit: int,
        batch_size: int = 16,
    ) -> None:
        super().__init__(store, min_score=min_score, min_chunks=min_chunks, candidate_limit=candidate_limit)
        self.embedder = embedder
        self.batch_size = batch_size
        self.index = VectorIndex()
        self._dim: int | None = None

    @property
    def dim(self) -> int:
        if self._dim is None:
            self._dim = self.embedder.dim
        return self._dim

    @property
    def index_key(self) -> str:
        return f"{self.name}:{self.embedder.model_name}:{self.dim}"

    def represent(self, query: str) -> tuple[float, ...] | None:
        vector = self.embedder.embed(query)
        if vector is None:
            return None
        return check_vector(vector, self.dim)

    def score(self, representation: Sequence[float]) -> list[ScoredCandidate]:
        if self.index.size:
            return self.index.search(representation)
        hits = self.store.query_top_k(representation, limit=self.candidate_limit)
        candidates = [
            ScoredCandidate(chunk=chunk, score=_distance_to_score(distance))
            for chunk, distance in hits
        ]
        return sorted(candidates, key=lambda item: item.score, reverse=True)

    def prepare(self, chunks: Sequence[Chunk]) -> list[Chunk | EmbeddedChunk]:
        """Embed chunks batch by batch; chunks without a valid vector are dropped."""
        embedded: list[Chunk | EmbeddedChunk] = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            try:
                result = self.embedder.encode([chunk.text for chunk in batch], batch_size=self.batch_size)
            except EmbeddingFailure:
                raise
            except Exception as exc:
                raise EmbeddingFailure(f"Embedder failed on batch at {start}: {exc}") from exc
            for chunk, vector in zip(batch, result.vectors):
                try:
                    embedded.append(EmbeddedChunk(chunk=chunk, vector=check_vector(vector, self.dim)))
                except EmbeddingFailure as exc:
                    logger.warning("Dropping chunk %s: %s", chunk.id, exc)
        if chunks and not embedded:
            raise EmbeddingFailure(f"None of {len(chunks)} chunks could be embedded")
        return embedded

    def load(self, records: Sequence[Chunk | EmbeddedChunk]) -> None:
        self.index.load([record for record in records if isinstance(record, EmbeddedChunk)])

    def warm_up(self) -> None:
        self.embedder.warm_up()


def build_scorer(settings: Settings, store: IndexStore, embedder: Embedder | None = None) -> Scorer:
    if settings.backend == "vector":
        if embedder is None:
            raise ValueError("vector backend requires an embedder")
        return VectorScorer(
            store,
            embedder,
            min_score=settings.min_score,
            min_chunks=settings.min_chunks,
            candidate_limit=settings.candidate_limit,
            batch_size=settings.embedding_batch_size,
        )
    return LexicalScorer(
        store,
        min_score=settings.min_score,
        min_chunks=settings.min_chunks,
        candidate_limit=settings.candidate_limit,
    )


def _distance_to_score(distance: float) -> float:
    return min(1.0, max(0.0, 1.0 - distance))


__all__ = ["Scorer", "LexicalScorer", "VectorScorer", "build_scorer"]

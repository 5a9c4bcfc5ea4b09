"""Error taxonomy and retrieval outcomes."""

from __future__ import annotations

from enum import Enum


class RetrievalError(Exception):
    """Base class for failures inside the retrieval engine."""


class EmbeddingFailure(RetrievalError):
    """Embedder unavailable or returned a malformed vector."""


class StorageFailure(RetrievalError):
    """I/O, corruption, or migration error in the index store."""


class RetrievalOutcome(str, Enum):
    SELECTED = "selected"
    EMPTY_QUERY = "empty_query"
    BELOW_THRESHOLD = "below_threshold"
    EMBEDDING_FAILURE = "embedding_failure"
    STORAGE_FAILURE = "storage_failure"
    ERROR = "error"

    @property
    def fell_back(self) -> bool:
        return self is not RetrievalOutcome.SELECTED


__all__ = [
    "RetrievalError",
    "EmbeddingFailure",
    "StorageFailure",
    "RetrievalOutcome",
]

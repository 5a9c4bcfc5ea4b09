"""Embedding utilities."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from array import array
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Protocol, Sequence

from rulebook_rag.core.errors import EmbeddingFailure

if TYPE_CHECKING:
    from rulebook_rag.core.config import Settings

try:
    from sentence_transformers import SentenceTransformer
except Exception:  # pragma: no cover - optional dependency
    SentenceTransformer = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")

HASHED_MODEL = "hashed"


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float] | None]
    model: str
    dim: int


class Embedder(Protocol):
    """Anything that turns text into a fixed-length, L2-normalised vector."""

    model_name: str

    @property
    def dim(self) -> int: ...

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch: ...

    def embed(self, text: str) -> list[float] | None: ...

    def warm_up(self) -> None: ...


class HashedEmbedder:
    """Deterministic hashed bag-of-words embedding; needs no model files."""

    def __init__(self, model_name: str = HASHED_MODEL, dim: int = 100) -> None:
        self.model_name = model_name
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch:
        vectors: list[list[float] | None] = []
        for text in texts:
            tokens = _tokenize(text)
            if not tokens:
                vectors.append(None)
                continue
            vector = [0.0] * self._dim
            for token in tokens:
                slot = _hash_token(token, self._dim)
                vector[slot] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim)

    def embed(self, text: str) -> list[float] | None:
        return self.encode([text]).vectors[0]

    def warm_up(self) -> None:
        return None


class SentenceTransformerEmbedder:
    """Wrapper around a locally available sentence-transformers model."""

    def __init__(self, model_name: str, device: str = "cpu") -> None:
        self.model_name = model_name
        self.device = device
        self._model: SentenceTransformer | None = None

    @property
    def dim(self) -> int:
        return int(self._load().get_sentence_embedding_dimension())

    def warm_up(self) -> None:
        self._load()

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch:
        items = list(texts)
        model = self._load()
        if not items:
            return EmbeddingBatch(vectors=[], model=self.model_name, dim=self.dim)
        try:
            matrix = model.encode(
                items,
                batch_size=batch_size,
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding model '{self.model_name}' failed: {exc}") from exc
        vectors: list[list[float] | None] = [row.tolist() for row in matrix]
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self.dim)

    def embed(self, text: str) -> list[float] | None:
        return self.encode([text]).vectors[0]

    def _load(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model
        if SentenceTransformer is None:
            raise EmbeddingFailure("sentence-transformers is required for model embeddings")
        try:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as exc:
            raise EmbeddingFailure(f"Failed to load embedding model '{self.model_name}': {exc}") from exc
        logger.info("Loaded embedding model %s", self.model_name)
        return self._model


def build_embedder(settings: Settings) -> Embedder:
    if settings.embedding_model == HASHED_MODEL:
        return HashedEmbedder(dim=settings.embedding_dim)
    return SentenceTransformerEmbedder(settings.embedding_model)


def check_vector(vector: Sequence[float] | None, dim: int) -> tuple[float, ...]:
    """Validate an embedder result; raise ``EmbeddingFailure`` if malformed."""
    if vector is None:
        raise EmbeddingFailure("Embedder returned no vector")
    if len(vector) != dim:
        raise EmbeddingFailure(f"Expected {dim}-dimensional vector, got {len(vector)}")
    values = tuple(float(value) for value in vector)
    if not all(math.isfinite(value) for value in values):
        raise EmbeddingFailure("Vector contains non-finite values")
    return values


def pack_vector(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def unpack_vector(payload: bytes) -> tuple[float, ...]:
    floats = array("f")
    floats.frombytes(payload)
    return tuple(floats)


def dot_product(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity for L2-normalised inputs."""
    return sum(x * y for x, y in zip(a, b))


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "Embedder",
    "EmbeddingBatch",
    "HashedEmbedder",
    "SentenceTransformerEmbedder",
    "build_embedder",
    "check_vector",
    "pack_vector",
    "unpack_vector",
    "dot_product",
]

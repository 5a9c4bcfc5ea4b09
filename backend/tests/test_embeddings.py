"""Tests for embedding utilities."""

import math

import pytest

from rulebook_rag.core.config import Settings
from rulebook_rag.core.errors import EmbeddingFailure
from rulebook_rag.ingest.embeddings import (
    HashedEmbedder,
    SentenceTransformerEmbedder,
    build_embedder,
    check_vector,
    dot_product,
    pack_vector,
    unpack_vector,
)


def test_hashed_embedder_is_normalised_and_deterministic() -> None:
    model = HashedEmbedder(dim=64)
    vectors = model.encode(["hello", "world"]).vectors
    assert len(vectors) == 2
    assert all(len(vec) == model.dim for vec in vectors)
    assert abs(sum(value * value for value in vectors[0]) - 1.0) < 1e-6
    assert model.embed("hello") == vectors[0]


def test_hashed_embedder_returns_none_without_tokens() -> None:
    model = HashedEmbedder()
    assert model.embed("?!  ...") is None


def test_similar_texts_score_higher() -> None:
    model = HashedEmbedder()
    query = model.embed("trade saffron for gold")
    close = model.embed("a merchant may trade saffron for gold")
    far = model.embed("archers defend the castle walls")
    assert dot_product(query, close) > dot_product(query, far)


def test_check_vector_rejects_malformed_vectors() -> None:
    assert check_vector([0.6, 0.8], 2) == (0.6, 0.8)
    with pytest.raises(EmbeddingFailure):
        check_vector(None, 2)
    with pytest.raises(EmbeddingFailure):
        check_vector([1.0], 2)
    with pytest.raises(EmbeddingFailure):
        check_vector([math.nan, 0.0], 2)


def test_pack_vector_uses_float32() -> None:
    payload = pack_vector([0.25, -1.0, 0.5])
    assert len(payload) == 12
    assert unpack_vector(payload) == (0.25, -1.0, 0.5)


def test_build_embedder_selects_implementation() -> None:
    hashed = build_embedder(Settings(embedding_dim=32))
    assert isinstance(hashed, HashedEmbedder)
    assert hashed.dim == 32
    model = build_embedder(Settings(embedding_model="sentence-transformers/all-MiniLM-L6-v2"))
    assert isinstance(model, SentenceTransformerEmbedder)

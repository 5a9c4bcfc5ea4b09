"""Tests for settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from rulebook_rag.core.config import Settings, get_settings


def test_defaults_match_tuned_constants() -> None:
    settings = Settings()
    assert settings.backend == "lexical"
    assert (settings.chunk_size, settings.chunk_overlap, settings.chunk_lookback) == (800, 100, 100)
    assert (settings.top_k, settings.max_per_source, settings.candidate_limit) == (5, 3, 15)
    assert settings.dedup_strategy == "shingle"
    assert settings.min_score == 0.0
    assert settings.min_chunks == 1


def test_vector_thresholds_follow_backend() -> None:
    settings = Settings(backend="vector")
    assert settings.min_score == 0.25
    assert settings.min_chunks == 2


def test_yaml_sections_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        f"  db_path: {tmp_path / 'index.db'}\n"
        "chunking:\n"
        "  size: 400\n"
        "  overlap: 50\n"
        "retrieval:\n"
        "  backend: vector\n"
        "  dedup_strategy: proximity\n"
        "debug:\n"
        "  history_size: 10\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RBRAG_TOP_K", "7")
    monkeypatch.setenv("RBRAG_CONFIG", str(config))

    settings = get_settings()

    assert settings.db_path == tmp_path / "index.db"
    assert settings.chunk_size == 400
    assert settings.chunk_overlap == 50
    assert settings.backend == "vector"
    assert settings.dedup_strategy == "proximity"
    assert settings.history_size == 10
    assert settings.top_k == 7


def test_db_path_expands_user() -> None:
    assert Settings(db_path="~/rules.db").db_path == Path.home() / "rules.db"


def test_inconsistent_chunking_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(chunk_size=100, chunk_overlap=100)
    with pytest.raises(ValidationError):
        Settings(backend="bm25")

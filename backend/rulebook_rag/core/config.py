"""Engine configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "RBRAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/rulebook-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("chunking", "lookback"): "chunk_lookback",
    ("retrieval", "backend"): "backend",
    ("retrieval", "top_k"): "top_k",
    ("retrieval", "max_per_source"): "max_per_source",
    ("retrieval", "candidate_limit"): "candidate_limit",
    ("retrieval", "dedup_strategy"): "dedup_strategy",
    ("retrieval", "dedup_window"): "dedup_window",
    ("retrieval", "lexical_min_score"): "lexical_min_score",
    ("retrieval", "vector_min_score"): "vector_min_score",
    ("retrieval", "lexical_min_chunks"): "lexical_min_chunks",
    ("retrieval", "vector_min_chunks"): "vector_min_chunks",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "preload_vectors"): "preload_vectors",
    ("debug", "history_size"): "history_size",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".rulebook-rag" / "rag_index.db")
    backend: Literal["lexical", "vector"] = "lexical"
    chunk_size: int = Field(default=800, gt=0)
    chunk_overlap: int = Field(default=100, ge=0)
    chunk_lookback: int = Field(default=100, ge=0)
    top_k: int = Field(default=5, ge=1)
    max_per_source: int = Field(default=3, ge=1)
    candidate_limit: int = Field(default=15, ge=1)
    dedup_strategy: Literal["shingle", "proximity"] = "shingle"
    dedup_window: int = Field(default=2, ge=0)
    lexical_min_score: float = 0.0
    vector_min_score: float = 0.25
    lexical_min_chunks: int = Field(default=1, ge=1)
    vector_min_chunks: int = Field(default=2, ge=1)
    embedding_model: str = "hashed"
    embedding_dim: int = Field(default=100, gt=0)
    embedding_batch_size: int = Field(default=16, ge=1)
    preload_vectors: bool = False
    history_size: int = Field(default=50, ge=1)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @property
    def min_score(self) -> float:
        return self.vector_min_score if self.backend == "vector" else self.lexical_min_score

    @property
    def min_chunks(self) -> int:
        return self.vector_min_chunks if self.backend == "vector" else self.lexical_min_chunks

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RBRAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]

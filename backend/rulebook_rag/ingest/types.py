"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(slots=True)
class IngestReport:
    """Outcome of a single ingest call."""

    content_hash: str
    skipped: bool = False
    primary_chunks: int = 0
    secondary_chunks: int = 0
    embedded: int = 0
    failed_embeddings: int = 0
    duration_ms: float = 0.0

    @property
    def total_chunks(self) -> int:
        return self.primary_chunks + self.secondary_chunks

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


__all__ = ["IngestReport"]

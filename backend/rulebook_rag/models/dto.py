"""Pydantic DTOs handed back to callers."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rulebook_rag.core.errors import RetrievalOutcome
from rulebook_rag.models.entities import ScoredCandidate, Source


class RetrievedContext(BaseModel):
    """Excerpts to use instead of the full documents."""

    primary_context: str
    secondary_context: str


class CandidateSummary(BaseModel):
    chunk_id: str
    source: Source
    score: float

    @classmethod
    def from_candidate(cls, candidate: ScoredCandidate) -> "CandidateSummary":
        return cls(
            chunk_id=candidate.chunk.id,
            source=candidate.chunk.source,
            score=round(float(candidate.score), 6),
        )


class RetrievalRecord(BaseModel):
    """Diagnostic trace of a single retrieve call."""

    id: str
    query: str
    backend: str
    outcome: RetrievalOutcome
    keywords: list[str] = Field(default_factory=list)
    candidates: list[CandidateSummary] = Field(default_factory=list)
    selected: list[CandidateSummary] = Field(default_factory=list)
    context: RetrievedContext | None = None
    error: str | None = None
    duration_ms: float = 0.0
    timestamp: int


__all__ = [
    "RetrievedContext",
    "CandidateSummary",
    "RetrievalRecord",
]

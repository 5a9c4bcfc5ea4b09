"""Final chunk selection: score threshold, per-source cap, near-duplicate removal."""

from __future__ import annotations

from collections import Counter
from typing import Callable, Literal, Sequence

from rulebook_rag.models.entities import Chunk, ScoredCandidate, parse_chunk_id
from rulebook_rag.utils.text import normalize_for_match

DuplicatePredicate = Callable[[Chunk, Sequence[Chunk]], bool]


class ProximityDuplicate:
    """Same source and ``sequence_index`` within ``window`` of an accepted chunk.

    Position is read from the chunk id only.
    """

    def __init__(self, window: int = 2) -> None:
        self.window = window

    def __call__(self, candidate: Chunk, accepted: Sequence[Chunk]) -> bool:
        source, index = parse_chunk_id(candidate.id)
        for chunk in accepted:
            other_source, other_index = parse_chunk_id(chunk.id)
            if other_source is source and abs(other_index - index) <= self.window:
                return True
        return False


class ShingleDuplicate:
    """Candidate shares a normalised ``size``-word phrase with an accepted chunk.

    Catches overlapping windows as well as passages repeated elsewhere in the
    document.
    """

    def __init__(self, size: int = 5, step: int = 2) -> None:
        self.size = size
        self.step = step

    def __call__(self, candidate: Chunk, accepted: Sequence[Chunk]) -> bool:
        if not accepted:
            return False
        words = normalize_for_match(candidate.text).split(" ")
        shingles = [
            " ".join(words[start : start + self.size])
            for start in range(0, len(words) - self.size + 1, self.step)
        ]
        if not shingles:
            return False
        for chunk in accepted:
            existing = normalize_for_match(chunk.text)
            if any(shingle in existing for shingle in shingles):
                return True
        return False


def build_duplicate_predicate(
    strategy: Literal["shingle", "proximity"] = "shingle",
    dedup_window: int = 2,
) -> DuplicatePredicate:
    if strategy == "proximity":
        return ProximityDuplicate(window=dedup_window)
    if strategy == "shingle":
        return ShingleDuplicate()
    raise ValueError(f"Unknown dedup strategy: {strategy}")


def select(
    candidates: Sequence[ScoredCandidate],
    *,
    k: int,
    min_score: float,
    max_per_source: int,
    is_duplicate: DuplicatePredicate,
) -> list[ScoredCandidate]:
    """Accept candidates best-first; input must be sorted by descending score."""
    accepted: list[ScoredCandidate] = []
    per_source: Counter = Counter()
    for candidate in candidates:
        if len(accepted) >= k or candidate.score < min_score:
            break
        source = candidate.chunk.source
        if per_source[source] >= max_per_source:
            continue
        if is_duplicate(candidate.chunk, [item.chunk for item in accepted]):
            continue
        accepted.append(candidate)
        per_source[source] += 1
    return accepted


__all__ = [
    "DuplicatePredicate",
    "ProximityDuplicate",
    "ShingleDuplicate",
    "build_duplicate_predicate",
    "select",
]

"""Search orchestration."""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass, field
from typing import Sequence

from rulebook_rag.core.config import Settings
from rulebook_rag.core.errors import EmbeddingFailure, RetrievalOutcome, StorageFailure
from rulebook_rag.core.logging import get_logger, log_context
from rulebook_rag.core.metrics import RETRIEVALS, RETRIEVE_LATENCY
from rulebook_rag.models.dto import CandidateSummary, RetrievalRecord, RetrievedContext
from rulebook_rag.models.entities import ScoredCandidate, Source
from rulebook_rag.retrieval.history import RetrievalHistory
from rulebook_rag.retrieval.scorers import Scorer
from rulebook_rag.retrieval.selector import build_duplicate_predicate, select
from rulebook_rag.utils.ids import new_id
from rulebook_rag.utils.time import elapsed_ms, now_ms

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n"


@dataclass(slots=True)
class _Trace:
    outcome: RetrievalOutcome = RetrievalOutcome.ERROR
    keywords: list[str] = field(default_factory=list)
    candidates: list[ScoredCandidate] = field(default_factory=list)
    selected: list[ScoredCandidate] = field(default_factory=list)
    context: RetrievedContext | None = None
    error: str | None = None


class QueryService:
    """Scores, selects and assembles context for one question at a time.

    ``retrieve`` never raises: every failure maps to a :class:`RetrievalOutcome`
    and a ``None`` result, which callers treat as "use the full documents".
    """

    def __init__(self, scorer: Scorer, settings: Settings, history: RetrievalHistory | None = None) -> None:
        self.scorer = scorer
        self.settings = settings
        self.history = history if history is not None else RetrievalHistory(settings.history_size)
        self.is_duplicate = build_duplicate_predicate(settings.dedup_strategy, settings.dedup_window)

    def retrieve(self, query: str) -> RetrievedContext | None:
        start = time.perf_counter()
        trace = _Trace()
        try:
            self._run(query, trace)
        except EmbeddingFailure as exc:
            logger.warning("Embedding failed, falling back: %s", exc)
            trace.outcome, trace.error = RetrievalOutcome.EMBEDDING_FAILURE, str(exc)
        except (StorageFailure, sqlite3.Error) as exc:
            logger.warning("Index unavailable, falling back: %s", exc)
            trace.outcome, trace.error = RetrievalOutcome.STORAGE_FAILURE, str(exc)
        except Exception as exc:
            logger.exception("Retrieval failed")
            trace.outcome, trace.error = RetrievalOutcome.ERROR, str(exc)
        if trace.outcome.fell_back:
            trace.context = None

        duration = elapsed_ms(start)
        backend = self.scorer.name
        RETRIEVE_LATENCY.labels(backend=backend).observe(time.perf_counter() - start)
        RETRIEVALS.labels(backend=backend, outcome=trace.outcome.value).inc()
        logger.info(
            "Retrieve %s: %s candidates, %s selected",
            trace.outcome.value,
            len(trace.candidates),
            len(trace.selected),
            extra=log_context(backend=backend, duration_ms=duration),
        )
        self.history.record(
            RetrievalRecord(
                id=new_id("qry"),
                query=query,
                backend=backend,
                outcome=trace.outcome,
                keywords=trace.keywords,
                candidates=[CandidateSummary.from_candidate(item) for item in trace.candidates],
                selected=[CandidateSummary.from_candidate(item) for item in trace.selected],
                context=trace.context,
                error=trace.error,
                duration_ms=duration,
                timestamp=now_ms(),
            )
        )
        return trace.context

    # ------------------------------------------------------------------

    def _run(self, query: str, trace: _Trace) -> None:
        if not query.strip():
            trace.outcome = RetrievalOutcome.EMPTY_QUERY
            return
        representation = self.scorer.represent(query)
        if representation is None:
            trace.outcome = RetrievalOutcome.EMPTY_QUERY
            return
        trace.keywords = self.scorer.describe(representation)

        trace.candidates = self.scorer.score(representation)
        trace.selected = select(
            trace.candidates,
            k=self.settings.top_k,
            min_score=self.scorer.min_score,
            max_per_source=self.settings.max_per_source,
            is_duplicate=self.is_duplicate,
        )
        logger.debug("Selected %s", [item.chunk.id for item in trace.selected])
        if len(trace.selected) < self.scorer.min_chunks:
            trace.outcome = RetrievalOutcome.BELOW_THRESHOLD
            return

        trace.context = build_context(trace.selected)
        trace.outcome = RetrievalOutcome.SELECTED


def build_context(selected: Sequence[ScoredCandidate]) -> RetrievedContext:
    """Group accepted chunks by source, keeping selection order within each group."""
    groups: dict[Source, list[str]] = {Source.PRIMARY: [], Source.SECONDARY: []}
    for candidate in selected:
        groups[candidate.chunk.source].append(candidate.chunk.text)
    return RetrievedContext(
        primary_context=CONTEXT_SEPARATOR.join(groups[Source.PRIMARY]),
        secondary_context=CONTEXT_SEPARATOR.join(groups[Source.SECONDARY]),
    )


__all__ = ["QueryService", "build_context", "CONTEXT_SEPARATOR"]

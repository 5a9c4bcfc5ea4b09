"""Public facade: ingest once, retrieve many times, never raise to the caller."""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import Callable

from rulebook_rag.core.config import Settings, get_settings
from rulebook_rag.core.logging import get_logger, log_context
from rulebook_rag.db.index_store import IndexStore
from rulebook_rag.ingest.embeddings import Embedder, build_embedder
from rulebook_rag.ingest.pipeline import IngestPipeline
from rulebook_rag.ingest.types import IngestReport
from rulebook_rag.models.dto import RetrievalRecord, RetrievedContext
from rulebook_rag.retrieval.history import HistoryListener, RetrievalHistory
from rulebook_rag.retrieval.scorers import Scorer, build_scorer
from rulebook_rag.retrieval.search import QueryService

logger = get_logger(__name__)


class EngineState(str, Enum):
    NOT_READY = "not_ready"
    INDEXING = "indexing"
    READY = "ready"


class RetrievalEngine:
    """Owns the index store, the active scorer, and the retrieval history.

    ``ingest`` and ``retrieve`` run their blocking work in a worker thread.
    A failed ingest still leaves the engine ``READY`` with ``index_error`` set,
    and ``retrieve`` answers ``None`` whenever the full documents should be
    used instead.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        embedder: Embedder | None = None,
        history: RetrievalHistory | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._embedder = embedder
        self._history = history if history is not None else RetrievalHistory(self.settings.history_size)
        self._lock = threading.Lock()
        self._store: IndexStore | None = None
        self._scorer: Scorer | None = None
        self._pipeline: IngestPipeline | None = None
        self._query_service: QueryService | None = None
        self.state = EngineState.NOT_READY
        self.index_error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is EngineState.READY

    @property
    def backend(self) -> str:
        return self.settings.backend

    # Lifecycle -------------------------------------------------------

    def open(self) -> "RetrievalEngine":
        """Open the index store and wire the components; idempotent."""
        with self._lock:
            if self._store is not None:
                return self
            store = IndexStore.open(self.settings.db_path)
            embedder = self._embedder
            if embedder is None and self.settings.backend == "vector":
                embedder = build_embedder(self.settings)
            scorer = build_scorer(self.settings, store, embedder)
            self._pipeline = IngestPipeline(store, scorer, self.settings)
            self._query_service = QueryService(scorer, self.settings, self._history)
            self._scorer = scorer
            self._store = store
        logger.info(
            "Engine opened",
            extra=log_context(backend=self.backend, db_path=str(self.settings.db_path)),
        )
        return self

    def close(self) -> None:
        with self._lock:
            if self._store is None:
                return
            self._store.close()
            self._store = None
            self._scorer = None
            self._pipeline = None
            self._query_service = None
        self.state = EngineState.NOT_READY

    def __enter__(self) -> "RetrievalEngine":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "RetrievalEngine":
        await asyncio.to_thread(self.open)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await asyncio.to_thread(self.close)

    # Operations ------------------------------------------------------

    async def ingest(self, primary_text: str, secondary_text: str) -> IngestReport | None:
        """Index both sources unless the stored index already matches them.

        Blank sources still replace the stored index, leaving it empty so no
        passage from earlier content can be returned. Returns ``None`` when
        indexing failed.
        """
        primary_text = primary_text or ""
        secondary_text = secondary_text or ""
        if not (primary_text + secondary_text).strip():
            logger.warning("Both sources are empty; the index will hold no chunks")

        self.state = EngineState.INDEXING
        self.index_error = None
        try:
            await asyncio.to_thread(self.open)
            report = await asyncio.to_thread(self._pipeline.ingest, primary_text, secondary_text)
        except Exception as exc:
            self.index_error = str(exc) or exc.__class__.__name__
            logger.exception("Indexing failed; retrieval will fall back to full content")
            return None
        finally:
            self.state = EngineState.READY
        logger.info("Ingest finished", extra=log_context(report=report.to_dict()))
        return report

    async def retrieve(self, query: str) -> RetrievedContext | None:
        try:
            await asyncio.to_thread(self.open)
        except Exception:
            logger.exception("Index store unavailable")
            return None
        service = self._query_service
        if service is None:
            return None
        return await asyncio.to_thread(service.retrieve, query)

    async def warm_up(self) -> None:
        """Pre-load the embedder so the first query does not pay for it."""
        try:
            await asyncio.to_thread(self.open)
            await asyncio.to_thread(self._scorer.warm_up)
        except Exception:
            logger.warning("Warm-up failed; the model will load on first use", exc_info=True)

    # Retrieval history -----------------------------------------------

    def history(self, limit: int | None = None) -> list[RetrievalRecord]:
        return self._history.entries(limit)

    def last_retrieval(self) -> RetrievalRecord | None:
        return self._history.last()

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        return self._history.subscribe(listener)

    def export_history(self) -> bytes:
        return self._history.export()


__all__ = ["EngineState", "RetrievalEngine"]

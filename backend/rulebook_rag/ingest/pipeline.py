"""Ingest pipeline orchestration."""

from __future__ import annotations

import time

from rulebook_rag.core.config import Settings
from rulebook_rag.core.logging import get_logger, log_context
from rulebook_rag.core.metrics import INDEX_SIZE, INGEST_DURATION
from rulebook_rag.db.index_store import IndexStore
from rulebook_rag.ingest.chunker import chunk_text
from rulebook_rag.ingest.types import IngestReport
from rulebook_rag.models.entities import Chunk, EmbeddedChunk, Source
from rulebook_rag.retrieval.scorers import Scorer
from rulebook_rag.utils.hashing import content_hash
from rulebook_rag.utils.time import elapsed_ms

logger = get_logger(__name__)


class IngestPipeline:
    """Coordinate change detection, chunking, scorer preparation, and persistence."""

    def __init__(self, store: IndexStore, scorer: Scorer, settings: Settings) -> None:
        self.store = store
        self.scorer = scorer
        self.settings = settings

    def ingest(self, primary_text: str, secondary_text: str) -> IngestReport:
        """Rebuild the index unless it already matches the given content and scorer.

        Exceptions propagate; the previous index stays in place when the save fails.
        """
        start = time.perf_counter()
        digest = content_hash(primary_text + secondary_text)
        try:
            index_key = self.scorer.index_key
            if self.store.is_index_current(digest, index_key) and self.store.chunk_count() > 0:
                report = self._skip(digest)
            else:
                report = self._rebuild(digest, index_key, primary_text, secondary_text)
        finally:
            INGEST_DURATION.labels(backend=self.scorer.name).observe(time.perf_counter() - start)
        report.duration_ms = elapsed_ms(start)
        return report

    # Internal helpers -------------------------------------------------

    def _skip(self, digest: str) -> IngestReport:
        count = self.store.chunk_count()
        logger.info("Index current, skipping ingest (%s chunks)", count, extra=log_context(content_hash=digest))
        if self.settings.preload_vectors:
            self.scorer.load(self.store.get_all_chunks())
        INDEX_SIZE.set(count)
        return IngestReport(content_hash=digest, skipped=True)

    def _rebuild(self, digest: str, index_key: str, primary_text: str, secondary_text: str) -> IngestReport:
        primary = self._chunk(primary_text, Source.PRIMARY)
        secondary = self._chunk(secondary_text, Source.SECONDARY)
        chunks = primary + secondary
        logger.info(
            "Rebuilding index: %s primary, %s secondary chunks",
            len(primary),
            len(secondary),
            extra=log_context(content_hash=digest, index_key=index_key),
        )

        records = self.scorer.prepare(chunks)
        self.store.save_index(records, digest, index_key)
        self.scorer.load(records)
        INDEX_SIZE.set(len(records))

        embedded = sum(1 for record in records if isinstance(record, EmbeddedChunk))
        failed = len(chunks) - len(records)
        if failed:
            logger.warning("%s chunks were dropped during preparation", failed)
        return IngestReport(
            content_hash=digest,
            primary_chunks=len(primary),
            secondary_chunks=len(secondary),
            embedded=embedded,
            failed_embeddings=failed,
        )

    def _chunk(self, text: str, source: Source) -> list[Chunk]:
        return chunk_text(
            text,
            source,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
            lookback=self.settings.chunk_lookback,
        )


__all__ = ["IngestPipeline"]

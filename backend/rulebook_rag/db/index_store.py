"""Persistent chunk index backed by SQLite, FTS5 and packed vectors."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Sequence

from rulebook_rag.core.errors import StorageFailure
from rulebook_rag.core.logging import log_context
from rulebook_rag.db.sqlite import SQLiteDatabase
from rulebook_rag.ingest.embeddings import dot_product, pack_vector, unpack_vector
from rulebook_rag.models.entities import (
    Chunk,
    EmbeddedChunk,
    IndexMetadata,
    ScoredCandidate,
    Source,
    parse_chunk_id,
    unwrap,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "v4_fts5_vectors"

# dropped on version change, children first
_INDEX_TABLES = ("chunk_vectors", "chunks_fts", "chunks")

_CONTENT_HASH_KEY = "content_hash"
_INDEX_KEY = "index_key"
_SCHEMA_VERSION_KEY = "schema_version"


class IndexStore:
    """Chunk storage with content-hash invalidation and hard-reset migrations."""

    def __init__(self, database: SQLiteDatabase, schema_version: str = SCHEMA_VERSION) -> None:
        self.db = database
        self.schema_version = schema_version

    @classmethod
    def open(cls, db_path: Path | str, schema_version: str = SCHEMA_VERSION) -> "IndexStore":
        store = cls(SQLiteDatabase(db_path), schema_version=schema_version)
        try:
            store._initialise()
        except StorageFailure:
            store.close()
            raise
        except sqlite3.Error as exc:
            store.close()
            raise StorageFailure(f"Failed to open index at {db_path}: {exc}") from exc
        return store

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Index lifecycle -------------------------------------------------

    def is_index_current(self, content_hash: str, index_key: str | None = None) -> bool:
        """True when the stored index was built from ``content_hash`` by ``index_key``."""
        if self._get_meta(_CONTENT_HASH_KEY) != content_hash:
            return False
        return index_key is None or self._get_meta(_INDEX_KEY) == index_key

    def chunk_count(self) -> int:
        try:
            row = self.db.execute("SELECT COUNT(*) AS count FROM chunks").fetchone()
        except sqlite3.Error as exc:
            raise StorageFailure(f"Failed to count chunks: {exc}") from exc
        return int(row["count"]) if row else 0

    def metadata(self) -> IndexMetadata:
        return IndexMetadata(
            content_hash=self._get_meta(_CONTENT_HASH_KEY),
            schema_version=self._get_meta(_SCHEMA_VERSION_KEY) or self.schema_version,
            chunk_count=self.chunk_count(),
            index_key=self._get_meta(_INDEX_KEY),
        )

    def save_index(
        self,
        records: Sequence[Chunk | EmbeddedChunk],
        content_hash: str,
        index_key: str | None = None,
    ) -> None:
        """Replace every stored chunk and vector, then stamp ``content_hash`` and ``index_key``.

        Runs as one transaction: on failure the previous index and hash remain.
        """
        chunks = [unwrap(record) for record in records]
        embedded = [record for record in records if isinstance(record, EmbeddedChunk)]
        dims = {record.dim for record in embedded}
        if len(dims) > 1:
            raise ValueError(f"Vectors must share one dimensionality, got {sorted(dims)}")

        try:
            with self.db.transaction() as cursor:
                for table in _INDEX_TABLES:
                    cursor.execute(f"DELETE FROM {table}")
                cursor.executemany(
                    "INSERT INTO chunks (id, source, sequence_index, text) VALUES (?, ?, ?, ?)",
                    [(chunk.id, chunk.source.value, chunk.sequence_index, chunk.text) for chunk in chunks],
                )
                cursor.executemany(
                    "INSERT INTO chunks_fts (id, source, text) VALUES (?, ?, ?)",
                    [(chunk.id, chunk.source.value, chunk.text) for chunk in chunks],
                )
                cursor.executemany(
                    "INSERT INTO chunk_vectors (chunk_id, dim, vector) VALUES (?, ?, ?)",
                    [(record.chunk.id, record.dim, pack_vector(record.vector)) for record in embedded],
                )
                cursor.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                    [_CONTENT_HASH_KEY, content_hash],
                )
                if index_key is None:
                    cursor.execute("DELETE FROM meta WHERE key = ?", [_INDEX_KEY])
                else:
                    cursor.execute(
                        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                        [_INDEX_KEY, index_key],
                    )
        except sqlite3.Error as exc:
            raise StorageFailure(f"Failed to save index: {exc}") from exc
        logger.info(
            "Saved %s chunks (%s with vectors)",
            len(chunks),
            len(embedded),
            extra=log_context(content_hash=content_hash, index_key=index_key),
        )

    # Read paths ------------------------------------------------------

    def query(self, keywords: Sequence[str], limit: int = 15) -> list[ScoredCandidate]:
        """Full-text search requiring every keyword; best match first."""
        if not keywords:
            return []
        match = " ".join(_quote_term(keyword) for keyword in keywords)
        try:
            rows = self.db.query(
                """
                SELECT id, source, text, -bm25(chunks_fts) AS score
                FROM chunks_fts
                WHERE chunks_fts MATCH ?
                ORDER BY bm25(chunks_fts), rowid
                LIMIT ?
                """,
                [match, limit],
            )
        except sqlite3.Error:
            logger.exception("Full-text query failed for %r", match)
            return []
        return [ScoredCandidate(chunk=_row_to_chunk(row), score=float(row["score"])) for row in rows]

    def query_top_k(self, vector: Sequence[float], limit: int = 15) -> list[tuple[Chunk, float]]:
        """Nearest stored vectors by cosine distance (``1 - dot``), closest first."""
        try:
            rows = self.db.query(
                """
                SELECT chunks.id, chunks.source, chunks.sequence_index, chunks.text,
                       chunk_vectors.dim, chunk_vectors.vector
                FROM chunk_vectors
                JOIN chunks ON chunks.id = chunk_vectors.chunk_id
                ORDER BY chunks.source, chunks.sequence_index
                """
            )
        except sqlite3.Error:
            logger.exception("Vector query failed")
            return []
        hits: list[tuple[Chunk, float]] = []
        for row in rows:
            if row["dim"] != len(vector):
                logger.debug("Skipping %s: dimension %s != %s", row["id"], row["dim"], len(vector))
                continue
            distance = 1.0 - dot_product(vector, unpack_vector(row["vector"]))
            hits.append((_row_to_chunk(row), distance))
        hits.sort(key=lambda item: item[1])
        return hits[:limit]

    def get_all_chunks(self) -> list[Chunk | EmbeddedChunk]:
        try:
            rows = self.db.query(
                """
                SELECT chunks.id, chunks.source, chunks.sequence_index, chunks.text, chunk_vectors.vector
                FROM chunks
                LEFT JOIN chunk_vectors ON chunk_vectors.chunk_id = chunks.id
                ORDER BY chunks.source, chunks.sequence_index
                """
            )
        except sqlite3.Error:
            logger.exception("Failed to enumerate chunks")
            return []
        records: list[Chunk | EmbeddedChunk] = []
        for row in rows:
            chunk = _row_to_chunk(row)
            if row["vector"] is None:
                records.append(chunk)
            else:
                records.append(EmbeddedChunk(chunk=chunk, vector=unpack_vector(row["vector"])))
        return records

    # Internal helpers ------------------------------------------------

    def _initialise(self) -> None:
        self.db.ensure_schema()
        stored = self._get_meta(_SCHEMA_VERSION_KEY)
        if stored == self.schema_version:
            return
        if stored is not None:
            logger.warning("Index schema %s is stale (want %s); rebuilding", stored, self.schema_version)
        with self.db.transaction() as cursor:
            for table in _INDEX_TABLES:
                cursor.execute(f"DROP TABLE IF EXISTS {table}")
            cursor.execute("DELETE FROM meta WHERE key != ?", [_SCHEMA_VERSION_KEY])
            cursor.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                [_SCHEMA_VERSION_KEY, self.schema_version],
            )
        self.db.ensure_schema()

    def _get_meta(self, key: str) -> str | None:
        try:
            row = self.db.execute("SELECT value FROM meta WHERE key = ?", [key]).fetchone()
        except sqlite3.Error as exc:
            raise StorageFailure(f"Failed to read index metadata: {exc}") from exc
        return row["value"] if row else None


def _quote_term(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    keys = row.keys()
    if "sequence_index" in keys:
        sequence_index = int(row["sequence_index"])
    else:
        _, sequence_index = parse_chunk_id(row["id"])
    return Chunk(id=row["id"], source=Source(row["source"]), text=row["text"], sequence_index=sequence_index)


__all__ = ["IndexStore", "SCHEMA_VERSION"]

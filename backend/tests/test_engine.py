"""End-to-end tests for the retrieval engine."""

import asyncio

import orjson
import pytest

from rulebook_rag.core.errors import EmbeddingFailure, RetrievalOutcome, StorageFailure
from rulebook_rag.core.metrics import REGISTRY
from rulebook_rag.engine import EngineState, RetrievalEngine
from rulebook_rag.ingest.embeddings import HashedEmbedder
from rulebook_rag.retrieval.history import RetrievalHistory
from rulebook_rag.retrieval.scorers import Scorer
from rulebook_rag.retrieval.search import QueryService


class QueryFailingEmbedder(HashedEmbedder):
    def embed(self, text: str):
        raise EmbeddingFailure("model crashed")


class NothingEmbedder(HashedEmbedder):
    def encode(self, texts, batch_size: int = 16):
        batch = super().encode(texts, batch_size=batch_size)
        batch.vectors = [None for _ in batch.vectors]
        return batch


class BrokenStoreScorer(Scorer):
    name = "broken"

    def represent(self, query: str):
        return [query]

    def score(self, representation):
        raise StorageFailure("disk I/O error")


def test_paragraph_specific_query_returns_only_that_paragraph(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        report = asyncio.run(engine.ingest(rulebook_text, ""))
        assert report is not None
        assert report.primary_chunks == 3
        assert report.secondary_chunks == 0
        assert engine.state is EngineState.READY

        context = asyncio.run(engine.retrieve("Can I trade saffron?"))

    assert context is not None
    assert context.primary_context.startswith("Trading.")
    assert "saffron" in context.primary_context
    assert "knight" not in context.primary_context
    assert "Archers" not in context.primary_context
    assert context.secondary_context == ""


def test_stop_word_query_falls_back(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        assert asyncio.run(engine.retrieve("Can you tell me about this?")) is None
        assert asyncio.run(engine.retrieve("   ")) is None
        outcomes = [record.outcome for record in engine.history()]
    assert outcomes == [RetrievalOutcome.EMPTY_QUERY, RetrievalOutcome.EMPTY_QUERY]


def test_unmatched_query_is_below_threshold(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        assert asyncio.run(engine.retrieve("submarine torpedo")) is None
        record = engine.last_retrieval()
    assert record.outcome is RetrievalOutcome.BELOW_THRESHOLD
    assert record.keywords == ["submarine", "torpedo"]
    assert record.selected == []


def test_both_sources_are_partitioned(settings, rulebook_text, expansion_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, expansion_text))
        context = asyncio.run(engine.retrieve("trade saffron"))
    assert "Merchants" in context.primary_context
    assert context.secondary_context == expansion_text


def test_second_ingest_is_skipped_until_content_changes(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        first = asyncio.run(engine.ingest(rulebook_text, ""))
        second = asyncio.run(engine.ingest(rulebook_text, ""))
        third = asyncio.run(engine.ingest(rulebook_text, "New expansion rules."))
    assert first.skipped is False
    assert second.skipped is True
    assert second.content_hash == first.content_hash
    assert third.skipped is False
    assert third.secondary_chunks == 1


def test_index_survives_restart(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
    with RetrievalEngine(settings) as engine:
        assert engine.state is EngineState.NOT_READY
        context = asyncio.run(engine.retrieve("saffron"))
        report = asyncio.run(engine.ingest(rulebook_text, ""))
    assert context is not None
    assert report.skipped is True


def test_vector_backend_retrieves_with_enough_chunks(vector_settings, rulebook_text, expansion_text) -> None:
    vector_settings.vector_min_chunks = 1
    with RetrievalEngine(vector_settings, embedder=HashedEmbedder()) as engine:
        report = asyncio.run(engine.ingest(rulebook_text, expansion_text))
        context = asyncio.run(engine.retrieve("merchant trade saffron gold coins market"))
        record = engine.last_retrieval()
    assert report.embedded == 4
    assert record.outcome is RetrievalOutcome.SELECTED
    assert "saffron" in context.primary_context
    assert all(item.score >= vector_settings.vector_min_score for item in record.selected)


def test_vector_backend_single_chunk_falls_back(vector_settings) -> None:
    with RetrievalEngine(vector_settings, embedder=HashedEmbedder()) as engine:
        asyncio.run(engine.ingest("A merchant may trade saffron for gold.", ""))
        assert asyncio.run(engine.retrieve("trade saffron for gold")) is None
        record = engine.last_retrieval()
    assert record.outcome is RetrievalOutcome.BELOW_THRESHOLD
    assert len(record.selected) == 1


def test_vector_query_embedding_failure_falls_back(vector_settings, rulebook_text) -> None:
    with RetrievalEngine(vector_settings, embedder=QueryFailingEmbedder()) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        assert asyncio.run(engine.retrieve("trade saffron")) is None
        record = engine.last_retrieval()
    assert record.outcome is RetrievalOutcome.EMBEDDING_FAILURE
    assert record.error == "model crashed"


def test_ingest_failure_leaves_engine_ready(vector_settings, rulebook_text) -> None:
    with RetrievalEngine(vector_settings, embedder=NothingEmbedder()) as engine:
        report = asyncio.run(engine.ingest(rulebook_text, ""))
        assert report is None
        assert engine.state is EngineState.READY
        assert engine.is_ready
        assert engine.index_error
        assert asyncio.run(engine.retrieve("trade saffron")) is None


def test_empty_documents_replace_previous_index(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        assert asyncio.run(engine.retrieve("saffron")) is not None

        report = asyncio.run(engine.ingest("", "  "))
        assert engine.is_ready
        assert engine.index_error is None
        assert asyncio.run(engine.retrieve("saffron")) is None
        record = engine.last_retrieval()
    assert report.skipped is False
    assert report.total_chunks == 0
    assert record.outcome is RetrievalOutcome.BELOW_THRESHOLD
    assert record.candidates == []


def test_async_context_manager_and_warm_up(settings, rulebook_text) -> None:
    async def scenario():
        async with RetrievalEngine(settings) as engine:
            await engine.warm_up()
            await engine.ingest(rulebook_text, "")
            return await engine.retrieve("saffron")

    assert asyncio.run(scenario()) is not None


def test_storage_failure_is_recorded(settings) -> None:
    history = RetrievalHistory(5)
    scorer = BrokenStoreScorer(None, min_score=0.0, min_chunks=1, candidate_limit=15)
    service = QueryService(scorer, settings, history)
    assert service.retrieve("anything") is None
    assert history.last().outcome is RetrievalOutcome.STORAGE_FAILURE
    assert history.last().error == "disk I/O error"


def test_history_subscribe_and_export(settings, rulebook_text) -> None:
    seen = []
    history = RetrievalHistory(2)
    with RetrievalEngine(settings, history=history) as engine:
        unsubscribe = engine.subscribe(seen.append)
        asyncio.run(engine.ingest(rulebook_text, ""))
        asyncio.run(engine.retrieve("saffron"))
        asyncio.run(engine.retrieve("knight"))
        unsubscribe()
        asyncio.run(engine.retrieve("archers"))
        exported = orjson.loads(engine.export_history())

    assert [record.query for record in seen] == ["saffron", "knight"]
    assert [entry["query"] for entry in exported] == ["knight", "archers"]
    assert exported[-1]["outcome"] == "selected"
    assert len(engine.history(limit=1)) == 1


def test_retrieve_outcomes_are_counted(settings, rulebook_text) -> None:
    labels = {"backend": "lexical", "outcome": "selected"}
    before = REGISTRY.get_sample_value("rbrag_retrievals_total", labels) or 0.0
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        asyncio.run(engine.retrieve("saffron"))
    assert REGISTRY.get_sample_value("rbrag_retrievals_total", labels) == pytest.approx(before + 1)
    assert REGISTRY.get_sample_value("rbrag_index_chunks") == 3


def test_switching_to_vector_backend_rebuilds_index(settings, vector_settings, rulebook_text, expansion_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, expansion_text))

    vector_settings.vector_min_chunks = 1
    with RetrievalEngine(vector_settings, embedder=HashedEmbedder()) as engine:
        report = asyncio.run(engine.ingest(rulebook_text, expansion_text))
        context = asyncio.run(engine.retrieve("merchant trade saffron gold coins market"))
    assert report.skipped is False
    assert report.embedded == 4
    assert context is not None
    assert "saffron" in context.primary_context


def test_embedding_dimension_change_rebuilds_index(vector_settings, rulebook_text, expansion_text) -> None:
    vector_settings.vector_min_chunks = 1
    vector_settings.preload_vectors = True
    query = "merchant trade saffron gold coins market"
    with RetrievalEngine(vector_settings, embedder=HashedEmbedder(dim=64)) as engine:
        asyncio.run(engine.ingest(rulebook_text, expansion_text))

    with RetrievalEngine(vector_settings, embedder=HashedEmbedder()) as engine:
        rebuilt = asyncio.run(engine.ingest(rulebook_text, expansion_text))
        assert asyncio.run(engine.retrieve(query)) is not None

    with RetrievalEngine(vector_settings, embedder=HashedEmbedder()) as engine:
        reused = asyncio.run(engine.ingest(rulebook_text, expansion_text))
        assert asyncio.run(engine.retrieve(query)) is not None
        record = engine.last_retrieval()
    assert rebuilt.skipped is False
    assert reused.skipped is True
    assert record.outcome is RetrievalOutcome.SELECTED


def test_question_word_is_kept_as_keyword(settings, rulebook_text) -> None:
    night = "Night phase. What a player draws at dusk stays hidden until dawn."
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        assert asyncio.run(engine.retrieve("what is it")) is None
        missing = engine.last_retrieval()

        asyncio.run(engine.ingest(rulebook_text, night))
        context = asyncio.run(engine.retrieve("what is it"))
    assert missing.outcome is RetrievalOutcome.BELOW_THRESHOLD
    assert missing.keywords == ["what"]
    assert context is not None
    assert context.primary_context == ""
    assert context.secondary_context == night


def test_history_limit_zero_returns_nothing(settings, rulebook_text) -> None:
    with RetrievalEngine(settings) as engine:
        asyncio.run(engine.ingest(rulebook_text, ""))
        asyncio.run(engine.retrieve("saffron"))
        asyncio.run(engine.retrieve("knight"))
        assert engine.history(limit=0) == []
        assert [record.query for record in engine.history(limit=1)] == ["knight"]
        assert len(engine.history()) == 2

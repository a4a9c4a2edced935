"""Tests for chunk selection."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from kgrag.domain import (
    ChunkScores,
    ExtractedEntity,
    ExtractionResult,
    FaultTolerance,
    ScoringWeights,
    SelectionStatus,
)
from kgrag.exceptions import (
    ChunkScoringError,
    EmptyGraphError,
    InvalidMaxChunksError,
    PreconditionError,
    ProviderError,
)
from kgrag.repositories import KnowledgeGraph
from kgrag.services.chunk_selector import ChunkSelector
from kgrag.services.relevance_scorer import RelevanceScorer


def extraction_of(*names):
    return ExtractionResult(entities=[ExtractedEntity(text=name) for name in names])


def fixed_total_scorer(totals):
    """Scorer returning a predetermined total per chunk id."""
    scorer = MagicMock(spec=RelevanceScorer)
    scorer.weights = ScoringWeights()
    scorer.score_chunk.side_effect = (
        lambda query_embedding, chunk_embedding, query_entities, chunk_id, graph, weights=None: (
            ChunkScores(),
            totals[chunk_id],
        )
    )
    return scorer


def make_graph(texts):
    graph = KnowledgeGraph()
    for chunk_id, text in enumerate(texts):
        graph.add_chunk(chunk_id, text)
    return graph


@pytest.fixture
def selector(embedding_service, entity_extractor):
    return ChunkSelector(embedding_service=embedding_service, entity_extractor=entity_extractor)


class TestRanking:
    """Ordering and truncation of results."""

    @pytest.mark.asyncio
    async def test_ranks_by_total_score(self, embedding_service, entity_extractor):
        selector = ChunkSelector(
            embedding_service,
            entity_extractor,
            scorer=fixed_total_scorer({0: 0.9, 1: 0.5, 2: 0.7}),
        )

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b", "c"]), max_chunks=2)

        assert [c.total_score for c in result.chunks] == [0.9, 0.7]
        assert [c.chunk_id for c in result.chunks] == [0, 2]
        assert result.status == SelectionStatus.OK
        assert result.total_candidates == 3

    @pytest.mark.asyncio
    async def test_ties_break_by_chunk_id(self, embedding_service, entity_extractor):
        selector = ChunkSelector(
            embedding_service,
            entity_extractor,
            scorer=fixed_total_scorer({0: 0.5, 1: 0.8, 2: 0.5, 3: 0.5}),
        )

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b", "c", "d"]))

        assert [c.chunk_id for c in result.chunks] == [1, 0, 2, 3]

    @pytest.mark.asyncio
    async def test_default_max_chunks(self, embedding_service, entity_extractor):
        selector = ChunkSelector(embedding_service, entity_extractor, default_max_chunks=3)

        result = await selector.select_relevant_chunks("query", make_graph(list("abcdefg")))

        assert len(result.chunks) == 3

    @pytest.mark.asyncio
    async def test_result_carries_text_and_scores(self, selector, capital_graph, entity_extractor):
        entity_extractor.extract.return_value = extraction_of("France")

        result = await selector.select_relevant_chunks("What is the capital of France?", capital_graph)

        top = result.chunks[0]
        assert top.chunk_id == 0
        assert top.text == "Paris is the capital of France."
        assert top.scores.semantic == pytest.approx(1.0)
        assert top.scores.entity == pytest.approx(0.5)
        assert top.scores.position == pytest.approx(1.0)
        assert top.entities == ["France", "Paris"]
        assert top.total_score == pytest.approx(0.3 * 1.0 + 0.4 * 0.5 + 0.1 * 1.0)

    @pytest.mark.asyncio
    async def test_entity_overlap_ranks_matching_chunk_first(self, embedding_service, entity_extractor, capital_graph):
        entity_extractor.extract.return_value = extraction_of("France")
        weights = ScoringWeights(semantic=0.3, entity=0.4, relationship=0.2, position=0.0)
        selector = ChunkSelector(embedding_service, entity_extractor)

        result = await selector.select_relevant_chunks(
            "What is the capital of France?", capital_graph, weights=weights
        )

        assert [c.chunk_id for c in result.chunks] == [0, 1]
        assert result.chunks[0].scores.entity > result.chunks[1].scores.entity
        assert result.query_entities == ["France"]
        assert result.weights == weights

    @pytest.mark.asyncio
    async def test_min_total_score_filters(self, embedding_service, entity_extractor):
        selector = ChunkSelector(
            embedding_service,
            entity_extractor,
            scorer=fixed_total_scorer({0: 0.9, 1: 0.1}),
            min_total_score=0.5,
        )

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b"]))

        assert [c.chunk_id for c in result.chunks] == [0]


class TestProviderCalls:
    """Calls made to the external collaborators."""

    @pytest.mark.asyncio
    async def test_query_entities_extracted_once(self, selector, entity_extractor, embedding_service):
        await selector.select_relevant_chunks("query", make_graph(["a", "b", "c", "d"]))

        entity_extractor.extract.assert_awaited_once_with("query")
        # One query embedding plus one per chunk
        assert embedding_service.generate_embedding.await_count == 5

    @pytest.mark.asyncio
    async def test_precomputed_embeddings_are_reused(self, selector, embedding_service):
        graph = KnowledgeGraph()
        graph.add_chunk(0, "a", embedding=[0.0, 1.0, 0.0])
        graph.add_chunk(1, "b", embedding=[1.0, 0.0, 0.0])

        result = await selector.select_relevant_chunks("query", graph)

        embedding_service.generate_embedding.assert_awaited_once_with("query")
        assert result.chunks[0].chunk_id == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, embedding_service, entity_extractor):
        active = 0
        peak = 0

        async def slow_embed(text):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = slow_embed
        selector = ChunkSelector(embedding_service, entity_extractor, max_concurrency=2)

        await selector.select_relevant_chunks("query", make_graph(list("abcdefgh")))

        assert peak <= 2

    @pytest.mark.asyncio
    async def test_extraction_failure_is_tolerated(self, selector, entity_extractor):
        entity_extractor.extract.side_effect = ProviderError("down", provider="extraction")

        result = await selector.select_relevant_chunks("query", make_graph(["a"]))

        assert result.query_entities == []
        assert result.status == SelectionStatus.OK

    @pytest.mark.asyncio
    async def test_extraction_failure_can_propagate(self, embedding_service, entity_extractor):
        entity_extractor.extract.side_effect = ProviderError("down", provider="extraction")
        selector = ChunkSelector(embedding_service, entity_extractor, propagate_extraction_errors=True)

        with pytest.raises(ProviderError):
            await selector.select_relevant_chunks("query", make_graph(["a"]))


class TestFailures:
    """Preconditions and per-chunk failures."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_chunks", [0, -1])
    async def test_rejects_non_positive_max_chunks(self, selector, max_chunks):
        with pytest.raises(InvalidMaxChunksError):
            await selector.select_relevant_chunks("query", make_graph(["a"]), max_chunks=max_chunks)

    @pytest.mark.asyncio
    async def test_rejects_empty_graph(self, selector, embedding_service):
        with pytest.raises(EmptyGraphError):
            await selector.select_relevant_chunks("query", KnowledgeGraph())

        embedding_service.generate_embedding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_empty_query(self, selector):
        with pytest.raises(PreconditionError):
            await selector.select_relevant_chunks("   ", make_graph(["a"]))

    @pytest.mark.asyncio
    async def test_query_embedding_failure_propagates(self, selector, embedding_service):
        embedding_service.generate_embedding.side_effect = ProviderError("quota exceeded")

        with pytest.raises(ProviderError):
            await selector.select_relevant_chunks("query", make_graph(["a"]))

    @pytest.mark.asyncio
    async def test_failed_chunk_is_excluded(self, selector, embedding_service):
        async def embed(text):
            if text == "broken":
                raise ProviderError("invalid input")
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed

        result = await selector.select_relevant_chunks("query", make_graph(["ok", "broken", "fine"]))

        assert [c.chunk_id for c in result.chunks] == [0, 2]
        assert [e.chunk_id for e in result.excluded] == [1]
        assert "invalid input" in result.excluded[0].reason

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_excluded(self, selector):
        graph = KnowledgeGraph()
        graph.add_chunk(0, "a", embedding=[1.0, 0.0, 0.0])
        graph.add_chunk(1, "b", embedding=[1.0, 0.0])

        result = await selector.select_relevant_chunks("query", graph)

        assert [c.chunk_id for c in result.chunks] == [0]
        assert [e.chunk_id for e in result.excluded] == [1]

    @pytest.mark.asyncio
    async def test_fail_mode_aborts_selection(self, embedding_service, entity_extractor):
        async def embed(text):
            if text == "broken":
                raise ProviderError("invalid input")
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed
        selector = ChunkSelector(embedding_service, entity_extractor, fault_tolerance=FaultTolerance.FAIL)

        with pytest.raises(ChunkScoringError) as exc_info:
            await selector.select_relevant_chunks("query", make_graph(["ok", "broken"]))

        assert exc_info.value.chunk_id == 1

    @pytest.mark.asyncio
    async def test_slow_chunk_times_out(self, embedding_service, entity_extractor):
        async def embed(text):
            if text == "slow":
                await asyncio.sleep(5)
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed
        selector = ChunkSelector(embedding_service, entity_extractor, chunk_timeout=0.05)

        result = await selector.select_relevant_chunks("query", make_graph(["fast", "slow"]))

        assert [c.chunk_id for c in result.chunks] == [0]
        assert result.excluded[0].chunk_id == 1
        assert "timed out" in result.excluded[0].reason

    @pytest.mark.asyncio
    async def test_provider_unavailable_when_every_chunk_fails(self, selector, embedding_service):
        calls = 0

        async def embed(text):
            nonlocal calls
            calls += 1
            if calls == 1:
                return [1.0, 0.0, 0.0]
            raise ProviderError("service unavailable")

        embedding_service.generate_embedding.side_effect = embed

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b"]))

        assert result.status == SelectionStatus.PROVIDER_UNAVAILABLE
        assert result.status != SelectionStatus.NO_RELEVANT_CONTENT
        assert result.chunks == []
        assert len(result.excluded) == 2
        assert not result.has_content

    @pytest.mark.asyncio
    async def test_no_relevant_content_when_nothing_qualifies(self, embedding_service, entity_extractor):
        selector = ChunkSelector(
            embedding_service,
            entity_extractor,
            scorer=fixed_total_scorer({0: 0.2, 1: 0.1}),
            min_total_score=0.5,
        )

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b"]))

        assert result.status == SelectionStatus.NO_RELEVANT_CONTENT
        assert result.excluded == []

    @pytest.mark.asyncio
    async def test_partial_failure_still_ok(self, selector, embedding_service):
        async def embed(text):
            if text == "b":
                raise ProviderError("service unavailable")
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed

        result = await selector.select_relevant_chunks("query", make_graph(["a", "b"]))

        assert result.status == SelectionStatus.OK
        assert [c.chunk_id for c in result.chunks] == [0]

    @pytest.mark.asyncio
    async def test_cancellation_cancels_in_flight_calls(self, embedding_service, entity_extractor):
        started = asyncio.Event()
        cancelled = 0

        async def embed(text):
            nonlocal cancelled
            if text == "query":
                return [1.0, 0.0, 0.0]
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled += 1
                raise
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed
        selector = ChunkSelector(embedding_service, entity_extractor, max_concurrency=2)

        task = asyncio.create_task(selector.select_relevant_chunks("query", make_graph(["a", "b", "c"])))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancelled == 2

    @pytest.mark.asyncio
    async def test_selection_reads_a_consistent_view(self, embedding_service, entity_extractor):
        graph = make_graph(["a", "b"])

        async def embed(text):
            # Mutating the live graph mid-selection must not affect this pass
            graph.clear()
            return [1.0, 0.0, 0.0]

        embedding_service.generate_embedding.side_effect = embed
        selector = ChunkSelector(embedding_service, entity_extractor)

        result = await selector.select_relevant_chunks("query", graph)

        assert [c.chunk_id for c in result.chunks] == [0, 1]
        assert graph.chunk_count == 0


def make_document_graph():
    graph = KnowledgeGraph()
    graph.add_chunk(0, "Paris is the capital of France.", metadata={"documentId": "doc-1", "documentName": "europe.pdf", "pageNumber": 3})
    graph.add_chunk(1, "Tokyo is the capital of Japan.", metadata={"documentId": "doc-2", "documentName": "asia.pdf"})
    graph.add_chunk(2, "Berlin is the capital of Germany.", metadata={"originalDocumentId": "doc-1"})
    graph.add_chunk(3, "No source for this one.")
    return graph


class TestDocumentFilter:
    """Restricting candidates to selected documents."""

    @pytest.mark.asyncio
    async def test_filters_candidates_by_document(self, selector, embedding_service):
        result = await selector.select_relevant_chunks("capital", make_document_graph(), document_ids=["doc-1"])

        assert [c.chunk_id for c in result.chunks] == [0, 2]
        assert result.total_candidates == 2
        # Query embedding plus one call per matching chunk
        assert embedding_service.generate_embedding.await_count == 3

    @pytest.mark.asyncio
    async def test_matches_document_name_and_single_id(self, selector):
        result = await selector.select_relevant_chunks("capital", make_document_graph(), document_ids="asia.pdf")

        assert [c.chunk_id for c in result.chunks] == [1]

    @pytest.mark.asyncio
    async def test_empty_filter_keeps_every_chunk(self, selector):
        result = await selector.select_relevant_chunks("capital", make_document_graph(), max_chunks=10, document_ids=[])

        assert result.total_candidates == 4

    @pytest.mark.asyncio
    async def test_unknown_document_is_rejected(self, selector, embedding_service):
        with pytest.raises(EmptyGraphError):
            await selector.select_relevant_chunks("capital", make_document_graph(), document_ids=["missing"])

        embedding_service.generate_embedding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scored_chunks_carry_metadata(self, selector):
        result = await selector.select_relevant_chunks("capital", make_document_graph(), document_ids=["doc-2"])

        assert result.chunks[0].metadata == {"documentId": "doc-2", "documentName": "asia.pdf"}

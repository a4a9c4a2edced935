"""Tests for query engine."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from kgrag.domain import ChunkScores, ExcludedChunk, ScoredChunk, SelectionResult, SelectionStatus
from kgrag.exceptions import EmptyGraphError, ProviderError
from kgrag.repositories import KnowledgeGraph
from kgrag.services.chunk_selector import ChunkSelector
from kgrag.services.query_engine import (
    GENERATION_FAILED_ANSWER,
    NO_RELEVANT_CONTENT_ANSWER,
    PROVIDER_UNAVAILABLE_ANSWER,
    QueryEngine,
    format_citation,
)


def scored(chunk_id, text, total, metadata=None):
    return ScoredChunk(
        chunk_id=chunk_id, text=text, scores=ChunkScores(), total_score=total, metadata=metadata or {}
    )


@pytest.fixture
def mock_client():
    with patch("openai.AsyncOpenAI") as mock_openai:
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = " Paris is the capital of France [Source 1]. "
        client.chat.completions.create = AsyncMock(return_value=response)
        mock_openai.return_value = client
        yield client


@pytest.fixture
def selector():
    selector = MagicMock(spec=ChunkSelector)
    selector.select_relevant_chunks = AsyncMock(
        return_value=SelectionResult(
            query="What is the capital of France?",
            chunks=[scored(0, "Paris is the capital of France.", 0.9)],
            query_entities=["France"],
            total_candidates=2,
        )
    )
    return selector


@pytest.fixture
def query_engine(selector, mock_client):
    """Create query engine fixture."""
    return QueryEngine(selector=selector, api_key="test-key", temperature=0.0, max_tokens=200)


@pytest.mark.asyncio
async def test_query_generates_answer(query_engine, selector, mock_client):
    graph = KnowledgeGraph()

    response = await query_engine.query("What is the capital of France?", graph, max_chunks=3)

    assert response.answer == "Paris is the capital of France [Source 1]."
    assert [s.chunk_id for s in response.sources] == [0]
    assert response.metadata["total_sources"] == 1
    assert response.metadata["query_entities"] == ["France"]
    assert "reason" not in response.metadata
    selector.select_relevant_chunks.assert_awaited_once_with(
        "What is the capital of France?", graph, max_chunks=3, weights=None, document_ids=None
    )

    call_args = mock_client.chat.completions.create.call_args
    assert call_args.kwargs["temperature"] == 0.0
    assert call_args.kwargs["max_tokens"] == 200
    assert "[Source 1]\nParis is the capital of France." in call_args.kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_no_relevant_content_skips_generation(query_engine, selector, mock_client):
    selector.select_relevant_chunks.return_value = SelectionResult(
        query="Who won in 1998?", status=SelectionStatus.NO_RELEVANT_CONTENT
    )

    response = await query_engine.query("Who won in 1998?", KnowledgeGraph())

    assert response.answer == NO_RELEVANT_CONTENT_ANSWER
    assert response.sources == []
    assert response.metadata["reason"] == "no_relevant_content"
    mock_client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ProviderError("embedding down"), EmptyGraphError("empty")])
async def test_selection_errors_propagate(query_engine, selector, mock_client, error):
    selector.select_relevant_chunks.side_effect = error

    with pytest.raises(type(error)):
        await query_engine.query("anything", KnowledgeGraph())

    mock_client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_generation_failure_returns_fallback_answer(query_engine, mock_client):
    mock_client.chat.completions.create.side_effect = RuntimeError("boom")

    response = await query_engine.query("What is the capital of France?", KnowledgeGraph())

    assert response.answer == GENERATION_FAILED_ANSWER
    assert response.metadata["reason"] == "answer_generation_failed"
    assert response.metadata["total_sources"] == 1


def test_build_context_respects_length(query_engine):
    query_engine.max_context_length = 60
    chunks = [scored(i, "x" * 30, 1.0 - i / 10) for i in range(3)]

    context = query_engine.build_context(chunks)

    assert "[Source 1]" in context
    assert "[Source 2]" not in context


@pytest.mark.asyncio
async def test_provider_outage_is_not_reported_as_no_content(query_engine, selector, mock_client):
    selector.select_relevant_chunks.return_value = SelectionResult(
        query="q",
        status=SelectionStatus.PROVIDER_UNAVAILABLE,
        excluded=[
            ExcludedChunk(chunk_id=0, reason="service unavailable"),
            ExcludedChunk(chunk_id=1, reason="service unavailable"),
        ],
    )

    response = await query_engine.query("q", KnowledgeGraph())

    assert response.answer == PROVIDER_UNAVAILABLE_ANSWER
    assert response.answer != NO_RELEVANT_CONTENT_ANSWER
    assert response.metadata["reason"] == "provider_unavailable"
    assert response.metadata["excluded_chunks"] == 2
    mock_client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_document_filter_is_passed_to_selection(query_engine, selector):
    graph = KnowledgeGraph()

    await query_engine.query("q", graph, document_ids=["doc-1"])

    selector.select_relevant_chunks.assert_awaited_once_with(
        "q", graph, max_chunks=None, weights=None, document_ids=["doc-1"]
    )


@pytest.mark.asyncio
async def test_sources_are_cited_by_document_and_page(query_engine, selector, mock_client):
    selector.select_relevant_chunks.return_value = SelectionResult(
        query="q",
        chunks=[
            scored(0, "Paris is the capital of France.", 0.9, {"documentName": "europe.pdf", "pageNumber": 3}),
            scored(1, "Unattributed text.", 0.5),
        ],
    )

    response = await query_engine.query("q", KnowledgeGraph())

    prompt = mock_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "[Source 1] [Source: europe.pdf, Page 3]\nParis is the capital of France." in prompt
    assert "[Source 2]\nUnattributed text." in prompt
    assert response.metadata["citations"] == ["[Source: europe.pdf, Page 3]", None]


def test_format_citation():
    assert format_citation({"documentName": "a.pdf", "pageNumber": "2/5"}) == "[Source: a.pdf, Page 2/5]"
    assert format_citation({"documentId": "doc-1"}) == "[Source: doc-1, Page 1/1]"
    assert format_citation({}) is None

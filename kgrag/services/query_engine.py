"""Query engine for graph-grounded question answering."""

from typing import Any, Iterable, Optional

import openai
from loguru import logger

from kgrag.domain import QueryResponse, ScoredChunk, ScoringWeights, SelectionStatus
from kgrag.exceptions import ProviderError
from kgrag.repositories import KnowledgeGraph
from kgrag.services.chunk_selector import ChunkSelector

NO_RELEVANT_CONTENT_ANSWER = "I couldn't find any relevant information to answer your question."
PROVIDER_UNAVAILABLE_ANSWER = (
    "The retrieval service is currently unavailable, so your question could not be answered. "
    "Please try again later."
)
GENERATION_FAILED_ANSWER = "I encountered an error while generating the answer. Please try again."

ANSWER_GENERATION_FAILED = "answer_generation_failed"

SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based on the provided context.

Guidelines:
- Answer the question using ONLY information from the provided context
- If the context does not contain the answer, say "I don't have sufficient information to answer this question."
- Cite the sources you use with the [Source N] format
- Be concise and factual
"""


def format_citation(metadata: dict[str, Any]) -> Optional[str]:
    """Format a ``[Source: <document>, Page <page>]`` citation from chunk metadata.

    Chunks without a document name or id get no citation.
    """
    document = metadata.get("documentName") or metadata.get("documentId")
    if not document:
        return None
    page = metadata.get("pageNumber") or "1/1"
    return f"[Source: {document}, Page {page}]"


class QueryEngine:
    """Service selecting graph chunks for a query and generating an answer from them."""

    def __init__(
        self,
        selector: ChunkSelector,
        api_key: str,
        model: str = "gpt-4-turbo-preview",
        max_context_length: int = 4000,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> None:
        """Initialize query engine."""
        self.selector = selector
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_context_length = max_context_length
        self.temperature = temperature
        self.max_tokens = max_tokens
        logger.info(f"Initialized QueryEngine with model: {model}")

    def build_context(self, chunks: list[ScoredChunk]) -> str:
        """Build context string from ranked chunks, within the context budget."""
        context_parts = []
        current_length = 0

        for i, chunk in enumerate(chunks, 1):
            header = f"[Source {i}]"
            citation = format_citation(chunk.metadata)
            if citation:
                header = f"{header} {citation}"
            chunk_text = f"{header}\n{chunk.text}\n"

            if current_length + len(chunk_text) > self.max_context_length:
                break

            context_parts.append(chunk_text)
            current_length += len(chunk_text)

        context = "\n".join(context_parts)
        logger.debug(f"Built context of {len(context)} characters from {len(context_parts)} sources")
        return context

    async def query(
        self,
        query: str,
        graph: KnowledgeGraph,
        max_chunks: Optional[int] = None,
        weights: Optional[ScoringWeights] = None,
        document_ids: Optional[Iterable[str]] = None,
    ) -> QueryResponse:
        """Answer a query from the most relevant chunks of the graph.

        Provider and precondition errors from selection propagate. Selections
        without content answer with a fixed message and a ``reason`` in the
        metadata: ``no_relevant_content`` when nothing matched, and
        ``provider_unavailable`` when every chunk failed to score. A failed
        answer generation is marked with ``answer_generation_failed``.
        """
        logger.info(f"Processing query: {query}")

        selection = await self.selector.select_relevant_chunks(
            query, graph, max_chunks=max_chunks, weights=weights, document_ids=document_ids
        )

        if selection.status != SelectionStatus.OK:
            answer = (
                PROVIDER_UNAVAILABLE_ANSWER
                if selection.status == SelectionStatus.PROVIDER_UNAVAILABLE
                else NO_RELEVANT_CONTENT_ANSWER
            )
            return QueryResponse(
                answer=answer,
                sources=[],
                metadata={
                    "query": query,
                    "total_sources": 0,
                    "reason": selection.status.value,
                    "excluded_chunks": len(selection.excluded),
                },
            )

        context = self.build_context(selection.chunks)
        metadata = {
            "query": query,
            "total_sources": len(selection.chunks),
            "context_length": len(context),
            "query_entities": selection.query_entities,
            "excluded_chunks": len(selection.excluded),
            "candidates": selection.total_candidates,
            "citations": [format_citation(chunk.metadata) for chunk in selection.chunks],
        }

        try:
            answer = await self._generate_answer(query, context)
        except ProviderError:
            answer = GENERATION_FAILED_ANSWER
            metadata["reason"] = ANSWER_GENERATION_FAILED

        logger.info(f"Generated answer with {len(selection.chunks)} sources")
        return QueryResponse(answer=answer, sources=selection.chunks, metadata=metadata)

    async def _generate_answer(self, query: str, context: str) -> str:
        """Generate answer using LLM with retrieved context."""
        user_prompt = f"""Context:
{context}

Question: {query}

Answer:"""

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            logger.error(f"Error generating answer: {e}")
            raise ProviderError(f"Answer generation failed: {e}", provider="generation") from e

        answer = (response.choices[0].message.content or "").strip()
        logger.debug(f"Generated answer: {answer[:100]}...")
        return answer

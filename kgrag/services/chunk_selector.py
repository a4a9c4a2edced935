"""Chunk selection: score every chunk against a query and keep the best."""

import asyncio
from typing import Iterable, Optional, Union

from loguru import logger

from kgrag.domain import (
    Chunk,
    ExcludedChunk,
    FaultTolerance,
    ScoredChunk,
    ScoringWeights,
    SelectionResult,
    SelectionStatus,
    chunk_sort_key,
)
from kgrag.exceptions import (
    ChunkScoringError,
    EmbeddingDimensionError,
    EmptyGraphError,
    InvalidMaxChunksError,
    PreconditionError,
    ProviderError,
)
from kgrag.repositories import KnowledgeGraph
from kgrag.services.embedding_service import EmbeddingService
from kgrag.services.entity_extractor import EntityExtractor
from kgrag.services.relevance_scorer import RelevanceScorer


class ChunkSelector:
    """Service ranking the chunks of a knowledge graph for a query."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        entity_extractor: EntityExtractor,
        scorer: Optional[RelevanceScorer] = None,
        max_concurrency: int = 5,
        chunk_timeout: float = 30.0,
        fault_tolerance: FaultTolerance = FaultTolerance.SKIP,
        propagate_extraction_errors: bool = False,
        default_max_chunks: int = 5,
        min_total_score: Optional[float] = None,
    ) -> None:
        """Initialize chunk selector."""
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")

        self.embedding_service = embedding_service
        self.entity_extractor = entity_extractor
        self.scorer = scorer or RelevanceScorer()
        self.max_concurrency = max_concurrency
        self.chunk_timeout = chunk_timeout
        self.fault_tolerance = fault_tolerance
        self.propagate_extraction_errors = propagate_extraction_errors
        self.default_max_chunks = default_max_chunks
        self.min_total_score = min_total_score
        logger.info(
            f"Initialized ChunkSelector (concurrency={max_concurrency}, timeout={chunk_timeout}s, "
            f"fault_tolerance={fault_tolerance.value})"
        )

    async def select_relevant_chunks(
        self,
        query: str,
        graph: KnowledgeGraph,
        max_chunks: Optional[int] = None,
        weights: Optional[ScoringWeights] = None,
        document_ids: Optional[Iterable[str]] = None,
    ) -> SelectionResult:
        """Score every chunk in the graph and return the top ranked ones.

        ``document_ids`` restricts the candidates to chunks whose metadata
        names one of the documents; an empty or missing filter keeps all.

        Raises ``PreconditionError`` subclasses for an empty query, a
        non-positive ``max_chunks`` or a graph without matching chunks, and
        ``ProviderError`` when the query itself cannot be embedded. Failures on
        individual chunks exclude that chunk, or abort the call with
        ``ChunkScoringError`` when fault tolerance is ``FAIL``. When every
        chunk is excluded the status is ``PROVIDER_UNAVAILABLE``, distinct
        from ``NO_RELEVANT_CONTENT``.
        """
        if max_chunks is None:
            max_chunks = self.default_max_chunks
        if isinstance(max_chunks, bool) or not isinstance(max_chunks, int) or max_chunks <= 0:
            raise InvalidMaxChunksError(f"max_chunks must be a positive integer, got {max_chunks!r}")
        if not query or not query.strip():
            raise PreconditionError("Query must not be empty")

        # Consistent read view for the whole pass
        view = graph.snapshot()
        if view.chunk_count == 0:
            raise EmptyGraphError("Knowledge graph has no chunks to score")

        if isinstance(document_ids, str):
            document_ids = [document_ids]
        document_filter = set(document_ids or ())
        if document_filter:
            candidates = view.chunks_for_documents(document_filter)
            if not candidates:
                raise EmptyGraphError(
                    f"No chunks found for the selected documents: {sorted(document_filter)}"
                )
        else:
            candidates = list(view.iter_chunks())

        weights = weights or self.scorer.weights
        logger.info(f"Selecting up to {max_chunks} of {len(candidates)} chunks for query: {query[:50]}")

        query_entities = await self._extract_query_entities(query)
        query_embedding = await self.embedding_service.generate_embedding(query)

        outcomes = await self._score_all(candidates, view, query_embedding, query_entities, weights)

        scored = [o for o in outcomes if isinstance(o, ScoredChunk)]
        excluded = [o for o in outcomes if isinstance(o, ExcludedChunk)]

        if not scored and excluded:
            logger.error(f"All {len(excluded)} candidate chunks failed to score for query: {query[:50]}")
            return SelectionResult(
                query=query,
                status=SelectionStatus.PROVIDER_UNAVAILABLE,
                excluded=excluded,
                query_entities=query_entities,
                total_candidates=len(candidates),
                weights=weights,
            )

        if self.min_total_score is not None:
            below = [c for c in scored if c.total_score < self.min_total_score]
            if below:
                logger.debug(f"Dropped {len(below)} chunks below min score {self.min_total_score}")
            scored = [c for c in scored if c.total_score >= self.min_total_score]

        scored.sort(key=lambda c: (-c.total_score, chunk_sort_key(c.chunk_id)))
        selected = scored[:max_chunks]

        status = SelectionStatus.OK if selected else SelectionStatus.NO_RELEVANT_CONTENT
        if not selected:
            logger.warning(f"No relevant content found for query: {query[:50]}")
        else:
            logger.info(
                f"Selected {len(selected)} chunks (top score {selected[0].total_score:.3f}, "
                f"{len(excluded)} excluded)"
            )

        return SelectionResult(
            query=query,
            status=status,
            chunks=selected,
            excluded=excluded,
            query_entities=query_entities,
            total_candidates=len(candidates),
            weights=weights,
        )

    async def _extract_query_entities(self, query: str) -> list[str]:
        """Extract the query's entities once for the whole selection pass."""
        try:
            extraction = await self.entity_extractor.extract(query)
        except Exception as e:
            if self.propagate_extraction_errors:
                raise
            logger.warning(f"Query entity extraction failed, continuing without entities: {e}")
            return []

        names = extraction.entity_names()
        logger.debug(f"Query entities: {names}")
        return names

    async def _score_all(
        self,
        chunks: list[Chunk],
        graph: KnowledgeGraph,
        query_embedding: list[float],
        query_entities: list[str],
        weights: ScoringWeights,
    ) -> list[Union[ScoredChunk, ExcludedChunk]]:
        """Score chunks concurrently, bounded by the concurrency limit."""
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(
                self._score_chunk(chunk, graph, query_embedding, query_entities, weights, semaphore)
            )
            for chunk in chunks
        ]

        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            # Failure or caller cancellation: stop in-flight provider calls
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _score_chunk(
        self,
        chunk: Chunk,
        graph: KnowledgeGraph,
        query_embedding: list[float],
        query_entities: list[str],
        weights: ScoringWeights,
        semaphore: asyncio.Semaphore,
    ) -> Union[ScoredChunk, ExcludedChunk]:
        async with semaphore:
            try:
                chunk_embedding = chunk.embedding
                if chunk_embedding is None:
                    chunk_embedding = await asyncio.wait_for(
                        self.embedding_service.generate_embedding(chunk.text),
                        timeout=self.chunk_timeout,
                    )
                scores, total = self.scorer.score_chunk(
                    query_embedding,
                    chunk_embedding,
                    query_entities,
                    chunk.id,
                    graph,
                    weights,
                )
            except asyncio.TimeoutError as e:
                return self._exclude(chunk, f"embedding timed out after {self.chunk_timeout}s", e)
            except (ProviderError, EmbeddingDimensionError) as e:
                return self._exclude(chunk, str(e), e)

        return ScoredChunk(
            chunk_id=chunk.id,
            text=chunk.text,
            scores=scores,
            total_score=total,
            entities=sorted(graph.chunk_entity_names(chunk.id)),
            metadata=dict(chunk.metadata),
        )

    def _exclude(self, chunk: Chunk, reason: str, cause: Exception) -> ExcludedChunk:
        if self.fault_tolerance == FaultTolerance.FAIL:
            logger.error(f"Scoring chunk {chunk.id!r} failed: {reason}")
            raise ChunkScoringError(chunk.id, reason) from cause

        logger.warning(f"Excluding chunk {chunk.id!r} from selection: {reason}")
        return ExcludedChunk(chunk_id=chunk.id, reason=reason)

"""Graph builder service for populating the knowledge graph from text chunks."""

import asyncio
from typing import Any, Optional

from loguru import logger

from kgrag.domain import ExtractionResult, GraphStats
from kgrag.exceptions import PreconditionError, ProviderError
from kgrag.repositories import KnowledgeGraph
from kgrag.services.embedding_service import EmbeddingService
from kgrag.services.entity_extractor import EntityExtractor


class GraphBuilder:
    """Service turning text chunks into entities, relationships, and chunk links."""

    def __init__(
        self,
        entity_extractor: EntityExtractor,
        embedding_service: Optional[EmbeddingService] = None,
        embed_chunks: bool = False,
        max_concurrency: int = 5,
    ) -> None:
        """Initialize graph builder."""
        self.entity_extractor = entity_extractor
        self.embedding_service = embedding_service
        self.embed_chunks = embed_chunks and embedding_service is not None
        self.max_concurrency = max_concurrency
        logger.info(f"Initialized GraphBuilder (embed_chunks={self.embed_chunks})")

    async def process_chunks(
        self,
        graph: KnowledgeGraph,
        chunks: list[str],
        start_index: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GraphStats:
        """Add chunks to the graph, numbering them by position from ``start_index``.

        Without ``start_index`` numbering continues after the graph's highest
        integer chunk id. Ids already in the graph are never overwritten:
        entity links recorded for the old text would otherwise point at the
        new one. ``metadata`` (e.g. ``documentId``) is attached to every chunk.
        """
        if not chunks:
            logger.warning("No chunks to process")
            return graph.get_stats()

        async with graph.lock:
            if start_index is None:
                start_index = graph.next_chunk_id()
            taken = [
                start_index + offset
                for offset in range(len(chunks))
                if graph.get_chunk(start_index + offset) is not None
            ]
            if taken:
                raise PreconditionError(f"Chunk ids already in the graph: {taken}")

            extractions, embeddings = await self._prepare(chunks)
            self._apply(graph, chunks, extractions, embeddings, start_index, metadata)

        stats = graph.get_stats()
        logger.info(
            f"Processed {len(chunks)} chunks: {stats.total_entities} entities, "
            f"{stats.total_relationships} relationships in graph"
        )
        return stats

    async def rebuild(
        self,
        graph: KnowledgeGraph,
        chunks: list[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> GraphStats:
        """Replace the graph's contents with the knowledge extracted from ``chunks``.

        Extraction runs before the graph is cleared, so readers never see an
        empty graph while the provider calls are in flight.
        """
        logger.info(f"Rebuilding knowledge graph from {len(chunks)} chunks")
        async with graph.lock:
            extractions, embeddings = await self._prepare(chunks)
            graph.clear()
            self._apply(graph, chunks, extractions, embeddings, 0, metadata)
        return graph.get_stats()

    async def _prepare(
        self, chunks: list[str]
    ) -> tuple[list[ExtractionResult], Optional[list[list[float]]]]:
        if not chunks:
            return [], None
        extractions = await self._extract_all(chunks)
        embeddings = await self._embed_all(chunks)
        return extractions, embeddings

    def _apply(
        self,
        graph: KnowledgeGraph,
        chunks: list[str],
        extractions: list[ExtractionResult],
        embeddings: Optional[list[list[float]]],
        start_index: int,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        for offset, (text, extraction) in enumerate(zip(chunks, extractions)):
            chunk_id = start_index + offset
            graph.add_chunk(
                chunk_id,
                text,
                embedding=embeddings[offset] if embeddings else None,
                entities=extraction.entity_names(),
                metadata=metadata,
            )

            for entity in extraction.entities:
                graph.add_entity(entity.text, entity.type)
                graph.connect_entity_to_chunk(entity.text, chunk_id)

            for relationship in extraction.relationships:
                graph.add_relationship(
                    relationship.source,
                    relationship.relationship,
                    relationship.target,
                    chunk_id,
                )

    async def _extract_all(self, chunks: list[str]) -> list[ExtractionResult]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _extract(index: int, text: str) -> ExtractionResult:
            async with semaphore:
                logger.debug(f"Extracting entities from chunk {index}")
                return await self.entity_extractor.extract(text)

        return list(await asyncio.gather(*(_extract(i, text) for i, text in enumerate(chunks))))

    async def _embed_all(self, chunks: list[str]) -> Optional[list[list[float]]]:
        if not self.embed_chunks:
            return None
        try:
            return await self.embedding_service.generate_embeddings(chunks)
        except ProviderError as e:
            # Chunks are embedded lazily at selection time instead
            logger.warning(f"Could not precompute chunk embeddings: {e}")
            return None

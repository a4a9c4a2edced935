"""Service factories wired from application settings."""

from functools import lru_cache

from kgrag.core.config import get_settings
from kgrag.repositories import GraphRegistry, GraphSnapshotRepository
from kgrag.services.chunk_selector import ChunkSelector
from kgrag.services.embedding_service import EmbeddingService
from kgrag.services.entity_extractor import EntityExtractor
from kgrag.services.graph_builder import GraphBuilder
from kgrag.services.query_engine import QueryEngine
from kgrag.services.relevance_scorer import RelevanceScorer


@lru_cache
def get_graph_registry() -> GraphRegistry:
    """Get the registry holding one knowledge graph per session."""
    return GraphRegistry()


async def get_snapshot_repository() -> GraphSnapshotRepository:
    """Get snapshot repository instance."""
    settings = get_settings()
    return GraphSnapshotRepository(settings.snapshot_dir)


async def get_embedding_service() -> EmbeddingService:
    """Get embedding service instance."""
    settings = get_settings()
    return EmbeddingService(
        api_key=settings.openai_api_key,
        model=settings.openai_embedding_model,
    )


async def get_entity_extractor() -> EntityExtractor:
    """Get entity extractor instance."""
    settings = get_settings()
    return EntityExtractor(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_entities=settings.max_entities_per_chunk,
    )


async def get_relevance_scorer() -> RelevanceScorer:
    """Get relevance scorer instance."""
    settings = get_settings()
    return RelevanceScorer(
        relationship_weight=settings.relationship_weight,
        weights=settings.scoring_weights(),
    )


async def get_chunk_selector() -> ChunkSelector:
    """Get chunk selector instance."""
    settings = get_settings()
    return ChunkSelector(
        embedding_service=await get_embedding_service(),
        entity_extractor=await get_entity_extractor(),
        scorer=await get_relevance_scorer(),
        max_concurrency=settings.scoring_concurrency,
        chunk_timeout=settings.chunk_score_timeout,
        fault_tolerance=settings.selection_fault_tolerance(),
        propagate_extraction_errors=settings.propagate_extraction_errors,
        default_max_chunks=settings.max_chunks,
        min_total_score=settings.min_total_score,
    )


async def get_graph_builder() -> GraphBuilder:
    """Get graph builder instance."""
    settings = get_settings()
    return GraphBuilder(
        entity_extractor=await get_entity_extractor(),
        embedding_service=await get_embedding_service(),
        embed_chunks=settings.embed_chunks_on_ingest,
        max_concurrency=settings.scoring_concurrency,
    )


async def get_query_engine() -> QueryEngine:
    """Get query engine instance."""
    settings = get_settings()
    return QueryEngine(
        selector=await get_chunk_selector(),
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_context_length=settings.max_context_length,
        temperature=settings.openai_temperature,
        max_tokens=settings.openai_max_tokens,
    )

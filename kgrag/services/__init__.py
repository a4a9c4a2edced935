"""Services layer initialization."""

from kgrag.services.chunk_selector import ChunkSelector
from kgrag.services.embedding_service import EmbeddingService
from kgrag.services.entity_extractor import EntityExtractor
from kgrag.services.graph_builder import GraphBuilder
from kgrag.services.query_engine import QueryEngine
from kgrag.services.relevance_scorer import RelevanceScorer

__all__ = [
    "ChunkSelector",
    "EmbeddingService",
    "EntityExtractor",
    "GraphBuilder",
    "QueryEngine",
    "RelevanceScorer",
]

"""Domain models initialization."""

from kgrag.domain.graph import (
    ChunkDensity,
    ChunkRecord,
    EntityDensity,
    EntityRecord,
    GraphSnapshot,
    GraphStats,
    RelationshipRecord,
)
from kgrag.domain.models import (
    Chunk,
    ChunkId,
    Entity,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
    InsertOutcome,
    Relationship,
    chunk_sort_key,
    relationship_key,
)
from kgrag.domain.query import (
    ChunkScores,
    ExcludedChunk,
    FaultTolerance,
    QueryResponse,
    ScoredChunk,
    ScoringWeights,
    SelectionResult,
    SelectionStatus,
)

__all__ = [
    # Models
    "Chunk",
    "ChunkId",
    "Entity",
    "Relationship",
    "InsertOutcome",
    "ExtractedEntity",
    "ExtractedRelationship",
    "ExtractionResult",
    "chunk_sort_key",
    "relationship_key",
    # Graph
    "ChunkDensity",
    "ChunkRecord",
    "EntityDensity",
    "EntityRecord",
    "GraphSnapshot",
    "GraphStats",
    "RelationshipRecord",
    # Query
    "ChunkScores",
    "ExcludedChunk",
    "FaultTolerance",
    "QueryResponse",
    "ScoredChunk",
    "ScoringWeights",
    "SelectionResult",
    "SelectionStatus",
]

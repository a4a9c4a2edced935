"""Multi-signal relevance scoring of chunks against a query."""

from typing import Iterable, Optional, Sequence

import numpy as np
from loguru import logger

from kgrag.domain import ChunkDensity, ChunkId, ChunkScores, EntityDensity, ScoringWeights
from kgrag.exceptions import EmbeddingDimensionError
from kgrag.repositories import KnowledgeGraph

DIRECT_DENSITY_WEIGHT = 0.6
SECONDARY_DENSITY_WEIGHT = 0.4


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Compute cosine similarity between two embeddings.

    The result lies in [-1, 1]. Vectors of different lengths are rejected.
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        raise EmbeddingDimensionError(expected=a.size, actual=b.size)

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm1 * norm2))
    # Rounding can push |v . v| / |v|^2 a hair past 1
    return max(-1.0, min(1.0, similarity))


def entity_overlap(query_entities: Iterable[str], chunk_entities: Iterable[str]) -> float:
    """Case-insensitive overlap normalized by the larger entity set."""
    query_set = {e.lower() for e in query_entities}
    chunk_set = {e.lower() for e in chunk_entities}
    if not query_set or not chunk_set:
        return 0.0
    return len(query_set & chunk_set) / max(len(query_set), len(chunk_set))


def position_score(index: int, total: int) -> float:
    """Score favoring chunks earlier in document order."""
    if total <= 0:
        return 0.0
    return 1.0 - (index / total)


def combine_scores(scores: ChunkScores, weights: ScoringWeights) -> float:
    """Weighted linear combination of the four sub-scores."""
    return (
        scores.semantic * weights.semantic
        + scores.entity * weights.entity
        + scores.relationship * weights.relationship
        + scores.position * weights.position
    )


class RelevanceScorer:
    """Service computing semantic, entity, relationship, and position scores."""

    def __init__(
        self,
        relationship_weight: float = 0.2,
        weights: Optional[ScoringWeights] = None,
    ) -> None:
        """Initialize relevance scorer."""
        self.relationship_weight = relationship_weight
        self.weights = weights or ScoringWeights()
        logger.info(
            f"Initialized RelevanceScorer (weights={self.weights.model_dump()}, "
            f"relationship_weight={relationship_weight})"
        )

    def semantic_score(self, query_embedding: Sequence[float], chunk_embedding: Sequence[float]) -> float:
        """Cosine similarity of the query and chunk embeddings."""
        return cosine_similarity(query_embedding, chunk_embedding)

    def entity_score(
        self, query_entities: Iterable[str], chunk_id: ChunkId, graph: KnowledgeGraph
    ) -> float:
        """Overlap between query entities and the chunk's entities."""
        return entity_overlap(query_entities, graph.chunk_entity_names(chunk_id))

    def relationship_score(self, chunk_id: ChunkId, graph: KnowledgeGraph) -> float:
        """Relationship count of the chunk's entities times the relationship weight.

        Not normalized: a chunk whose entities take part in many relationships
        can score well above 1.0.
        """
        entities = graph.get_entities_for_chunk(chunk_id)
        return sum(len(entity.relationships) * self.relationship_weight for entity in entities)

    def position_score(self, chunk_id: ChunkId, graph: KnowledgeGraph) -> float:
        """Position of the chunk in document order."""
        return position_score(graph.chunk_position(chunk_id), graph.chunk_count)

    def total_score(self, scores: ChunkScores, weights: Optional[ScoringWeights] = None) -> float:
        return combine_scores(scores, weights or self.weights)

    def score_chunk(
        self,
        query_embedding: Sequence[float],
        chunk_embedding: Sequence[float],
        query_entities: Iterable[str],
        chunk_id: ChunkId,
        graph: KnowledgeGraph,
        weights: Optional[ScoringWeights] = None,
    ) -> tuple[ChunkScores, float]:
        """Compute all sub-scores and the weighted total for one chunk."""
        scores = ChunkScores(
            semantic=self.semantic_score(query_embedding, chunk_embedding),
            entity=self.entity_score(query_entities, chunk_id, graph),
            relationship=self.relationship_score(chunk_id, graph),
            position=self.position_score(chunk_id, graph),
        )
        total = self.total_score(scores, weights)
        logger.debug(f"Chunk {chunk_id!r} scores: {scores.model_dump()} total={total:.4f}")
        return scores, total

    def chunk_density(self, chunk_id: ChunkId, graph: KnowledgeGraph) -> ChunkDensity:
        """Analyze how densely the chunk's entities are interconnected.

        Direct relationships count every relationship of a connected entity;
        secondary connections are those whose other endpoint is also
        connected to the chunk.
        """
        entities = graph.get_entities_for_chunk(chunk_id)
        if not entities:
            return ChunkDensity(chunk_id=chunk_id)

        names = {entity.name for entity in entities}
        analysis = ChunkDensity(chunk_id=chunk_id)

        for entity in entities:
            direct = sorted(entity.relationships)
            secondary = []
            for key in direct:
                relationship = graph.get_relationship(key)
                if relationship is None:
                    continue
                other = relationship.target if relationship.source == entity.name else relationship.source
                if other != entity.name and other in names:
                    secondary.append(key)

            analysis.entities.append(
                EntityDensity(
                    name=entity.name,
                    direct_relationships=direct,
                    secondary_connections=secondary,
                )
            )
            analysis.direct_score += len(direct)
            analysis.secondary_score += len(secondary)

        analysis.density_score = (
            analysis.direct_score * DIRECT_DENSITY_WEIGHT
            + analysis.secondary_score * SECONDARY_DENSITY_WEIGHT
        )
        return analysis

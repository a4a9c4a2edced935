"""Test configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from kgrag.domain import ExtractionResult
from kgrag.repositories import KnowledgeGraph
from kgrag.services.embedding_service import EmbeddingService
from kgrag.services.entity_extractor import EntityExtractor


@pytest.fixture
def embedding_service():
    """Mock embedding service returning the same unit vector for every text."""
    service = MagicMock(spec=EmbeddingService)
    service.generate_embedding = AsyncMock(return_value=[1.0, 0.0, 0.0])
    service.generate_embeddings = AsyncMock(
        side_effect=lambda texts: [[1.0, 0.0, 0.0] for _ in texts]
    )
    return service


@pytest.fixture
def entity_extractor():
    """Mock entity extractor."""
    extractor = MagicMock(spec=EntityExtractor)
    extractor.extract = AsyncMock(return_value=ExtractionResult())
    return extractor


@pytest.fixture
def capital_graph():
    """Two capitals, each chunk linked to its city and country."""
    graph = KnowledgeGraph(session_id="test")
    graph.add_chunk(0, "Paris is the capital of France.")
    graph.add_chunk(1, "Berlin is the capital of Germany.")
    for name, entity_type, chunk_id in [
        ("Paris", "LOCATION", 0),
        ("France", "LOCATION", 0),
        ("Berlin", "LOCATION", 1),
        ("Germany", "LOCATION", 1),
    ]:
        graph.add_entity(name, entity_type)
        graph.connect_entity_to_chunk(name, chunk_id)
    return graph

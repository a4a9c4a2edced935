"""Core module initialization."""

from kgrag.core.config import Settings, get_settings
from kgrag.core.dependencies import (
    get_chunk_selector,
    get_embedding_service,
    get_entity_extractor,
    get_graph_builder,
    get_graph_registry,
    get_query_engine,
    get_relevance_scorer,
    get_snapshot_repository,
)
from kgrag.core.logging import setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_graph_registry",
    "get_snapshot_repository",
    "get_embedding_service",
    "get_entity_extractor",
    "get_relevance_scorer",
    "get_chunk_selector",
    "get_graph_builder",
    "get_query_engine",
]

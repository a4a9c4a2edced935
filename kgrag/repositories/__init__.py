"""Repositories initialization."""

from kgrag.repositories.knowledge_graph import GraphRegistry, KnowledgeGraph
from kgrag.repositories.snapshot_repository import GraphSnapshotRepository

__all__ = ["GraphRegistry", "GraphSnapshotRepository", "KnowledgeGraph"]

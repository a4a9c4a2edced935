"""Domain models for graph snapshots and statistics."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from kgrag.domain.models import ChunkId, chunk_sort_key


class EntityRecord(BaseModel):
    """Flat representation of an entity and its references."""

    model_config = ConfigDict(populate_by_name=True)

    entity: str
    type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    connected_chunks: set[ChunkId] = Field(default_factory=set, alias="connectedChunks")
    relationships: set[str] = Field(default_factory=set)

    @field_serializer("connected_chunks")
    def serialize_connected_chunks(self, value: set[ChunkId]) -> list[ChunkId]:
        return sorted(value, key=chunk_sort_key)

    @field_serializer("relationships")
    def serialize_relationships(self, value: set[str]) -> list[str]:
        return sorted(value)


class ChunkRecord(BaseModel):
    """Flat representation of a chunk."""

    model_config = ConfigDict(populate_by_name=True)

    chunk_id: ChunkId = Field(alias="chunkId")
    text: str
    embedding: Optional[list[float]] = None
    entities: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RelationshipRecord(BaseModel):
    """Flat representation of a relationship."""

    model_config = ConfigDict(populate_by_name=True)

    relation_key: str = Field(alias="relationKey")
    source: str
    target: str
    type: str
    chunk_id: ChunkId = Field(alias="chunkId")


class GraphSnapshot(BaseModel):
    """Serializable export of a whole knowledge graph."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    nodes: list[EntityRecord] = Field(default_factory=list)
    chunks: list[ChunkRecord] = Field(default_factory=list)
    relationships: list[RelationshipRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")


class GraphStats(BaseModel):
    """Statistics about the knowledge graph."""

    total_entities: int = 0
    total_chunks: int = 0
    total_relationships: int = 0
    entities_by_type: dict[str, int] = Field(default_factory=dict)
    relationships_by_type: dict[str, int] = Field(default_factory=dict)
    avg_relationships_per_entity: float = 0.0


class EntityDensity(BaseModel):
    """Relationship fan-out of one entity connected to a chunk."""

    name: str
    direct_relationships: list[str] = Field(default_factory=list)
    secondary_connections: list[str] = Field(default_factory=list)


class ChunkDensity(BaseModel):
    """Relationship density analysis of a single chunk."""

    chunk_id: ChunkId
    entities: list[EntityDensity] = Field(default_factory=list)
    direct_score: float = 0.0
    secondary_score: float = 0.0
    density_score: float = 0.0

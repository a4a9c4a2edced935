"""Domain models for entities, chunks, and relationships."""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

ChunkId = Union[int, str]

RELATION_KEY_SEPARATOR = "|"
RELATION_KEY_ESCAPE = "\\"


def _escape_key_part(part: str) -> str:
    return part.replace(RELATION_KEY_ESCAPE, RELATION_KEY_ESCAPE * 2).replace(
        RELATION_KEY_SEPARATOR, RELATION_KEY_ESCAPE + RELATION_KEY_SEPARATOR
    )


def relationship_key(source: str, relationship_type: str, target: str) -> str:
    """Build the composite key identifying a (source, type, target) triple.

    Separators and backslashes inside a part are backslash-escaped, so
    distinct triples never share a key.
    """
    return RELATION_KEY_SEPARATOR.join(
        _escape_key_part(part) for part in (source, relationship_type, target)
    )


def chunk_sort_key(chunk_id: ChunkId) -> tuple[int, Union[int, str]]:
    """Order chunk ids: integers ascending first, then strings ascending."""
    if isinstance(chunk_id, int):
        return (0, chunk_id)
    return (1, str(chunk_id))


class InsertOutcome(str, Enum):
    """Result of a mutating knowledge graph operation."""

    CREATED = "created"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"
    REJECTED_MISSING_REFERENCE = "rejected_missing_reference"


class Entity(BaseModel):
    """Represents a named entity tracked across chunks."""

    name: str
    entity_type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    connected_chunks: set[ChunkId] = Field(default_factory=set)
    relationships: set[str] = Field(default_factory=set)


class Chunk(BaseModel):
    """Represents a text chunk, the atomic unit of retrieval."""

    id: ChunkId
    text: str
    embedding: Optional[list[float]] = None
    entities: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Relationship(BaseModel):
    """Represents a directed, typed relationship observed in a chunk."""

    key: str
    source: str
    target: str
    relationship_type: str
    chunk_id: ChunkId


class ExtractedEntity(BaseModel):
    """Entity as reported by the extraction service."""

    text: str
    type: str = "OTHER"


class ExtractedRelationship(BaseModel):
    """Relationship as reported by the extraction service."""

    source: str
    relationship: str
    target: str


class ExtractionResult(BaseModel):
    """Entities and relationships extracted from a piece of text."""

    entities: list[ExtractedEntity] = Field(default_factory=list)
    relationships: list[ExtractedRelationship] = Field(default_factory=list)

    def entity_names(self) -> list[str]:
        """Get the distinct entity names in extraction order."""
        seen: set[str] = set()
        names = []
        for entity in self.entities:
            if entity.text not in seen:
                seen.add(entity.text)
                names.append(entity.text)
        return names

    @property
    def is_empty(self) -> bool:
        return not self.entities and not self.relationships

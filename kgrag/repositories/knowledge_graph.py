"""In-memory knowledge graph of entities, chunks, and relationships."""

import asyncio
from collections import defaultdict
from typing import Any, Iterable, Iterator, Optional

from loguru import logger

from kgrag.domain import (
    Chunk,
    ChunkId,
    ChunkRecord,
    Entity,
    EntityRecord,
    GraphSnapshot,
    GraphStats,
    InsertOutcome,
    Relationship,
    RelationshipRecord,
    relationship_key,
)

DOCUMENT_METADATA_FIELDS = ("documentId", "documentName", "originalDocumentId")


class KnowledgeGraph:
    """Memory-resident store backing relevance scoring for one session.

    Lookups on unknown names or ids return empty results instead of raising,
    since the graph may be read while ingestion is still filling it.
    """

    def __init__(self, session_id: Optional[str] = None, strict_references: bool = False) -> None:
        """Initialize an empty knowledge graph."""
        self.session_id = session_id
        self.strict_references = strict_references
        self.lock = asyncio.Lock()
        self._entities: dict[str, Entity] = {}
        self._chunks: dict[ChunkId, Chunk] = {}
        self._relationships: dict[str, Relationship] = {}
        self._chunk_entities: dict[ChunkId, set[str]] = defaultdict(set)
        self._positions: dict[ChunkId, int] = {}

    # Mutation

    def add_entity(
        self, name: str, entity_type: str, metadata: Optional[dict[str, Any]] = None
    ) -> InsertOutcome:
        """Add an entity unless one with the same name already exists."""
        if name in self._entities:
            return InsertOutcome.ALREADY_EXISTS

        self._entities[name] = Entity(
            name=name,
            entity_type=entity_type,
            metadata=dict(metadata or {}),
        )
        logger.debug(f"Added entity {name!r} ({entity_type})")
        return InsertOutcome.CREATED

    def add_chunk(
        self,
        chunk_id: ChunkId,
        text: str,
        embedding: Optional[list[float]] = None,
        entities: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> InsertOutcome:
        """Insert a chunk or overwrite the one stored under the same id."""
        outcome = InsertOutcome.UPDATED if chunk_id in self._chunks else InsertOutcome.CREATED
        self._chunks[chunk_id] = Chunk(
            id=chunk_id,
            text=text,
            embedding=embedding,
            entities=list(entities or []),
            metadata=dict(metadata or {}),
        )
        if chunk_id not in self._positions:
            self._positions[chunk_id] = len(self._positions)
        return outcome

    def connect_entity_to_chunk(self, entity_name: str, chunk_id: ChunkId) -> InsertOutcome:
        """Record that an entity appears in a chunk."""
        entity = self._entities.get(entity_name)
        if entity is None:
            logger.warning(f"Cannot connect unknown entity {entity_name!r} to chunk {chunk_id!r}")
            return InsertOutcome.REJECTED_MISSING_REFERENCE

        if self.strict_references and chunk_id not in self._chunks:
            logger.warning(f"Cannot connect entity {entity_name!r} to unknown chunk {chunk_id!r}")
            return InsertOutcome.REJECTED_MISSING_REFERENCE

        if chunk_id in entity.connected_chunks:
            return InsertOutcome.ALREADY_EXISTS

        entity.connected_chunks.add(chunk_id)
        self._chunk_entities[chunk_id].add(entity_name)
        return InsertOutcome.CREATED

    def add_relationship(
        self, source: str, relationship_type: str, target: str, chunk_id: ChunkId
    ) -> InsertOutcome:
        """Upsert a relationship; the latest chunk id wins for an existing triple."""
        key = relationship_key(source, relationship_type, target)
        outcome = InsertOutcome.UPDATED if key in self._relationships else InsertOutcome.CREATED

        self._relationships[key] = Relationship(
            key=key,
            source=source,
            target=target,
            relationship_type=relationship_type,
            chunk_id=chunk_id,
        )

        # Only existing endpoints index the key
        for name in (source, target):
            entity = self._entities.get(name)
            if entity is not None:
                entity.relationships.add(key)
            else:
                logger.debug(f"Relationship {key!r} stored without index on missing entity {name!r}")

        return outcome

    def clear(self) -> None:
        """Remove all entities, chunks, and relationships."""
        logger.info(
            f"Clearing knowledge graph ({len(self._entities)} entities, "
            f"{len(self._chunks)} chunks, {len(self._relationships)} relationships)"
        )
        self._entities.clear()
        self._chunks.clear()
        self._relationships.clear()
        self._chunk_entities.clear()
        self._positions.clear()

    # Lookup

    def get_entity(self, name: str) -> Optional[Entity]:
        """Get an entity by name."""
        return self._entities.get(name)

    def get_chunk(self, chunk_id: ChunkId) -> Optional[Chunk]:
        """Get a chunk by id."""
        return self._chunks.get(chunk_id)

    def get_relationship(self, key: str) -> Optional[Relationship]:
        """Get a relationship by its composite key."""
        return self._relationships.get(key)

    def next_chunk_id(self) -> int:
        """Get the first integer id after every integer chunk id in use."""
        int_ids = [cid for cid in self._chunks if isinstance(cid, int) and not isinstance(cid, bool)]
        return max(int_ids) + 1 if int_ids else 0

    def chunks_for_documents(self, document_ids: Iterable[str]) -> list[Chunk]:
        """Get chunks whose metadata names one of the documents, in insertion order.

        A chunk matches on its ``documentId``, ``documentName`` or
        ``originalDocumentId`` metadata.
        """
        wanted = list(document_ids)
        return [
            chunk
            for chunk in self._chunks.values()
            if any(chunk.metadata.get(field) in wanted for field in DOCUMENT_METADATA_FIELDS)
        ]

    def get_entity_relationships(self, entity_name: str) -> list[Relationship]:
        """Get all relationships registered under an entity."""
        entity = self._entities.get(entity_name)
        if entity is None:
            return []

        return [
            self._relationships[key]
            for key in sorted(entity.relationships)
            if key in self._relationships
        ]

    def get_chunks_for_entities(self, entity_names: Iterable[str]) -> set[ChunkId]:
        """Get the union of chunks connected to any of the given entities."""
        chunk_ids: set[ChunkId] = set()
        for name in entity_names:
            entity = self._entities.get(name)
            if entity is None:
                continue
            chunk_ids.update(cid for cid in entity.connected_chunks if cid in self._chunks)
        return chunk_ids

    def get_entities_for_chunk(self, chunk_id: ChunkId) -> list[Entity]:
        """Get the entities associated with a chunk."""
        if chunk_id not in self._chunks:
            return []

        names = sorted(self.chunk_entity_names(chunk_id))
        return [self._entities[name] for name in names if name in self._entities]

    def chunk_entity_names(self, chunk_id: ChunkId) -> set[str]:
        """Get connected entity names plus names explicitly attached to the chunk."""
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            return set()

        names = set(self._chunk_entities.get(chunk_id, ()))
        names.update(chunk.entities)
        return names

    def chunk_position(self, chunk_id: ChunkId) -> int:
        """Get the document-order index of a chunk.

        Integer ids are assigned by position at split time and are used as is;
        any other id falls back to insertion order.
        """
        if isinstance(chunk_id, int) and not isinstance(chunk_id, bool):
            return chunk_id
        return self._positions.get(chunk_id, len(self._positions))

    def iter_chunks(self) -> Iterator[Chunk]:
        """Iterate chunks in insertion order."""
        return iter(list(self._chunks.values()))

    def entity_names(self) -> list[str]:
        return list(self._entities)

    @property
    def entity_count(self) -> int:
        return len(self._entities)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def relationship_count(self) -> int:
        return len(self._relationships)

    def get_stats(self) -> GraphStats:
        """Get statistics about the graph."""
        entities_by_type: dict[str, int] = defaultdict(int)
        for entity in self._entities.values():
            entities_by_type[entity.entity_type] += 1

        relationships_by_type: dict[str, int] = defaultdict(int)
        for relationship in self._relationships.values():
            relationships_by_type[relationship.relationship_type] += 1

        avg = 0.0
        if self._entities:
            avg = sum(len(e.relationships) for e in self._entities.values()) / len(self._entities)

        return GraphStats(
            total_entities=len(self._entities),
            total_chunks=len(self._chunks),
            total_relationships=len(self._relationships),
            entities_by_type=dict(entities_by_type),
            relationships_by_type=dict(relationships_by_type),
            avg_relationships_per_entity=avg,
        )

    # Copying and serialization

    def snapshot(self) -> "KnowledgeGraph":
        """Get an independent copy to read from during one selection pass."""
        copy = KnowledgeGraph(session_id=self.session_id, strict_references=self.strict_references)
        copy._entities = {name: entity.model_copy(deep=True) for name, entity in self._entities.items()}
        copy._chunks = dict(self._chunks)
        copy._relationships = dict(self._relationships)
        copy._chunk_entities = defaultdict(set, {cid: set(names) for cid, names in self._chunk_entities.items()})
        copy._positions = dict(self._positions)
        return copy

    def to_snapshot(self) -> GraphSnapshot:
        """Export the graph to its flat serializable form."""
        return GraphSnapshot(
            session_id=self.session_id,
            nodes=[
                EntityRecord(
                    entity=entity.name,
                    type=entity.entity_type,
                    metadata=entity.metadata,
                    connected_chunks=set(entity.connected_chunks),
                    relationships=set(entity.relationships),
                )
                for entity in self._entities.values()
            ],
            chunks=[
                ChunkRecord(
                    chunk_id=chunk.id,
                    text=chunk.text,
                    embedding=chunk.embedding,
                    entities=chunk.entities,
                    metadata=chunk.metadata,
                )
                for chunk in self._chunks.values()
            ],
            relationships=[
                RelationshipRecord(
                    relation_key=rel.key,
                    source=rel.source,
                    target=rel.target,
                    type=rel.relationship_type,
                    chunk_id=rel.chunk_id,
                )
                for rel in self._relationships.values()
            ],
        )

    @classmethod
    def from_snapshot(
        cls, snapshot: GraphSnapshot, strict_references: bool = False
    ) -> "KnowledgeGraph":
        """Rebuild a graph from its flat serializable form."""
        graph = cls(session_id=snapshot.session_id, strict_references=strict_references)

        for record in snapshot.chunks:
            graph.add_chunk(
                record.chunk_id,
                record.text,
                embedding=record.embedding,
                entities=record.entities,
                metadata=record.metadata,
            )

        for record in snapshot.nodes:
            if graph.add_entity(record.entity, record.type, record.metadata) != InsertOutcome.CREATED:
                logger.warning(f"Duplicate entity {record.entity!r} in snapshot, keeping first")
                continue
            entity = graph._entities[record.entity]
            entity.relationships.update(record.relationships)
            for chunk_id in record.connected_chunks:
                graph.connect_entity_to_chunk(record.entity, chunk_id)

        for record in snapshot.relationships:
            graph._relationships[record.relation_key] = Relationship(
                key=record.relation_key,
                source=record.source,
                target=record.target,
                relationship_type=record.type,
                chunk_id=record.chunk_id,
            )

        logger.info(
            f"Loaded graph with {graph.entity_count} entities, {graph.chunk_count} chunks, "
            f"{graph.relationship_count} relationships"
        )
        return graph


class GraphRegistry:
    """Holds one explicitly constructed knowledge graph per session."""

    def __init__(self, strict_references: bool = False) -> None:
        """Initialize an empty registry."""
        self.strict_references = strict_references
        self._graphs: dict[str, KnowledgeGraph] = {}

    def get_or_create(self, session_id: str) -> KnowledgeGraph:
        """Get the graph for a session, creating it on first use."""
        graph = self._graphs.get(session_id)
        if graph is None:
            graph = KnowledgeGraph(session_id=session_id, strict_references=self.strict_references)
            self._graphs[session_id] = graph
            logger.info(f"Created knowledge graph for session {session_id}")
        return graph

    def get(self, session_id: str) -> Optional[KnowledgeGraph]:
        return self._graphs.get(session_id)

    def put(self, graph: KnowledgeGraph) -> None:
        """Register a graph, replacing any graph held for the same session."""
        if graph.session_id is None:
            raise ValueError("Graph must have a session_id to be registered")
        self._graphs[graph.session_id] = graph

    def drop(self, session_id: str) -> bool:
        """Forget a session's graph."""
        return self._graphs.pop(session_id, None) is not None

    def session_ids(self) -> list[str]:
        return list(self._graphs)

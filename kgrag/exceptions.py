"""Typed errors raised by the retrieval layer."""

from typing import Optional

from kgrag.domain.models import ChunkId


class KGRagError(Exception):
    """Base class for all retrieval layer errors."""


class ProviderError(KGRagError):
    """An external embedding or extraction provider failed."""

    def __init__(
        self,
        message: str,
        provider: str = "embedding",
        chunk_id: Optional[ChunkId] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.chunk_id = chunk_id


class PreconditionError(KGRagError, ValueError):
    """A call was rejected before any computation started."""


class EmbeddingDimensionError(PreconditionError):
    """Two embedding vectors do not share the same dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EmptyGraphError(PreconditionError):
    """The knowledge graph holds no chunks to score."""


class InvalidMaxChunksError(PreconditionError):
    """The requested number of chunks is not a positive integer."""


class ChunkScoringError(KGRagError):
    """Scoring a single chunk failed and the chunk was excluded."""

    def __init__(self, chunk_id: ChunkId, reason: str) -> None:
        super().__init__(f"Chunk {chunk_id!r} excluded: {reason}")
        self.chunk_id = chunk_id
        self.reason = reason


class SnapshotError(KGRagError):
    """A graph snapshot could not be read or written."""

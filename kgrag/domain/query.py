"""Domain models for relevance scoring and chunk selection."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from kgrag.domain.models import ChunkId


class FaultTolerance(str, Enum):
    """How chunk selection reacts to a failure while scoring one chunk."""

    SKIP = "skip"  # exclude the chunk, keep scoring the others
    FAIL = "fail"  # abort the whole selection


class SelectionStatus(str, Enum):
    """Outcome of a chunk selection pass."""

    OK = "ok"
    NO_RELEVANT_CONTENT = "no_relevant_content"
    PROVIDER_UNAVAILABLE = "provider_unavailable"  # every chunk failed, none was scored


class ScoringWeights(BaseModel):
    """Weights of the four sub-scores in the total relevance score."""

    semantic: float = 0.3
    entity: float = 0.4
    relationship: float = 0.2
    position: float = 0.1


class ChunkScores(BaseModel):
    """Independent sub-scores of one chunk against one query.

    ``relationship`` is not normalized and can exceed 1.0 when the chunk's
    entities take part in many relationships.
    """

    semantic: float = 0.0
    entity: float = 0.0
    relationship: float = 0.0
    position: float = 0.0


class ScoredChunk(BaseModel):
    """A chunk with its sub-scores and weighted total."""

    chunk_id: ChunkId
    text: str
    scores: ChunkScores
    total_score: float
    entities: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExcludedChunk(BaseModel):
    """A chunk that could not be scored."""

    chunk_id: ChunkId
    reason: str


class SelectionResult(BaseModel):
    """Ranked chunks selected for a query."""

    query: str
    status: SelectionStatus = SelectionStatus.OK
    chunks: list[ScoredChunk] = Field(default_factory=list)
    excluded: list[ExcludedChunk] = Field(default_factory=list)
    query_entities: list[str] = Field(default_factory=list)
    total_candidates: int = 0
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    @property
    def has_content(self) -> bool:
        return self.status == SelectionStatus.OK


class QueryResponse(BaseModel):
    """Answer generated from the selected chunks."""

    answer: str
    sources: list[ScoredChunk] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


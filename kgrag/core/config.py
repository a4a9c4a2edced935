"""Core configuration settings for the knowledge-graph retrieval layer."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kgrag.domain.query import FaultTolerance, ScoringWeights


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="kgrag", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    app_debug: bool = Field(default=False, alias="APP_DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # OpenAI
    openai_api_key: str = Field(..., alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4-turbo-preview", alias="OPENAI_MODEL")
    openai_embedding_model: str = Field(
        default="text-embedding-ada-002", alias="OPENAI_EMBEDDING_MODEL"
    )
    openai_temperature: float = Field(default=0.0, alias="OPENAI_TEMPERATURE")
    openai_max_tokens: int = Field(default=1000, alias="OPENAI_MAX_TOKENS")

    # Entity extraction
    max_entities_per_chunk: int = Field(default=50, alias="MAX_ENTITIES_PER_CHUNK")
    propagate_extraction_errors: bool = Field(
        default=False, alias="PROPAGATE_EXTRACTION_ERRORS"
    )

    # Relevance scoring
    score_weight_semantic: float = Field(default=0.3, alias="SCORE_WEIGHT_SEMANTIC")
    score_weight_entity: float = Field(default=0.4, alias="SCORE_WEIGHT_ENTITY")
    score_weight_relationship: float = Field(
        default=0.2, alias="SCORE_WEIGHT_RELATIONSHIP"
    )
    score_weight_position: float = Field(default=0.1, alias="SCORE_WEIGHT_POSITION")
    relationship_weight: float = Field(default=0.2, alias="RELATIONSHIP_WEIGHT")

    # Chunk selection
    max_chunks: int = Field(default=5, gt=0, alias="MAX_CHUNKS")
    scoring_concurrency: int = Field(default=5, gt=0, alias="SCORING_CONCURRENCY")
    chunk_score_timeout: float = Field(default=30.0, gt=0, alias="CHUNK_SCORE_TIMEOUT")
    fault_tolerance: Literal["skip", "fail"] = Field(default="skip", alias="FAULT_TOLERANCE")
    min_total_score: Optional[float] = Field(default=None, alias="MIN_TOTAL_SCORE")
    embed_chunks_on_ingest: bool = Field(default=False, alias="EMBED_CHUNKS_ON_INGEST")

    # Answer generation
    max_context_length: int = Field(default=4000, alias="MAX_CONTEXT_LENGTH")

    # Snapshots
    snapshot_dir: str = Field(default="data/snapshots", alias="SNAPSHOT_DIR")

    def scoring_weights(self) -> ScoringWeights:
        """Build the canonical scoring weights from configuration."""
        return ScoringWeights(
            semantic=self.score_weight_semantic,
            entity=self.score_weight_entity,
            relationship=self.score_weight_relationship,
            position=self.score_weight_position,
        )

    def selection_fault_tolerance(self) -> FaultTolerance:
        """Get the configured fault tolerance as an enum."""
        return FaultTolerance(self.fault_tolerance)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Pydantic models for configuration validation."""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
import re


class MemoryConfig(BaseModel):
    """Long-term memory store configuration."""

    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dimensions: Optional[int] = Field(
        default=384,
        gt=0,
        description="Expected vector size; None disables the dimension check"
    )
    tokenizer_model: str = Field(
        default="BAAI/bge-small-en-v1.5",
        description="Hugging Face tokenizer used for token budgeting ('estimate' for 4 chars/token)"
    )
    embedding_chunk_limit: int = Field(
        default=480,
        gt=0,
        description="Target tokens per stored chunk"
    )
    embedding_max_tokens: int = Field(
        default=512,
        gt=0,
        description="Hard embedding input limit; chunks above it are logged"
    )
    persist_directory: Path = Path("data/vector_store")
    collection_name: str = "memories"
    default_limit: int = Field(default=10, gt=0, le=200)
    default_score_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    channel_budget_ratio: float = Field(
        default=0.5,
        description="Share of the result budget reserved for channel-scoped memories (clamped to [0, 1])"
    )
    channel_id_pattern: str = Field(
        default=r"^\d{17,19}$",
        description="Regex a channel identifier must match to be used for scoping"
    )
    include_siblings: bool = True

    @field_validator('channel_id_pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Ensure the channel id pattern compiles."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f'channel_id_pattern is not a valid regex: {e}')
        return v

    @model_validator(mode='after')
    def validate_chunk_limit(self) -> "MemoryConfig":
        """Chunks must fit inside the embedding input limit."""
        if self.embedding_chunk_limit > self.embedding_max_tokens:
            raise ValueError('embedding_chunk_limit cannot exceed embedding_max_tokens')
        return self


class DuplicateDetectionConfig(BaseModel):
    """Duplicate response detection thresholds."""

    min_intra_turn_length: int = Field(
        default=100,
        gt=0,
        description="Responses shorter than this are never checked for self-repetition"
    )
    anchor_length: int = Field(
        default=30,
        gt=0,
        description="Prefix length used to locate a restart inside one response"
    )
    intra_turn_similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    min_cross_turn_length: int = Field(default=30, gt=0)
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    near_miss_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    word_jaccard_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    semantic_check: bool = Field(
        default=True,
        description="Compare embeddings of recent turns when an embedder is available"
    )
    semantic_similarity_threshold: float = Field(default=0.88, ge=0.0, le=1.0)
    recent_message_window: int = Field(default=5, gt=0, le=50)

    @model_validator(mode='after')
    def validate_near_miss(self) -> "DuplicateDetectionConfig":
        """Near-miss band must sit below the duplicate threshold."""
        if self.near_miss_threshold > self.similarity_threshold:
            raise ValueError('near_miss_threshold cannot exceed similarity_threshold')
        return self


class GenerationConfig(BaseModel):
    """Generation quality loop configuration."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    max_response_tokens: int = Field(default=2048, gt=0, le=8192)
    retry_on_empty: bool = Field(
        default=True,
        description="Treat an empty response like a duplicate and escalate"
    )
    persist_exhausted: bool = Field(
        default=False,
        description="Store exchanges whose duplication was never resolved"
    )


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    model_config = ConfigDict(extra='ignore')

    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    duplicate_detection: DuplicateDetectionConfig = Field(default_factory=DuplicateDetectionConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    debug: bool = False

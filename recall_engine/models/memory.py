"""Memory records, queries and retrieval results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MemoryMetadata:
    """Ownership and scoping metadata supplied when storing a memory."""
    persona_id: str
    personality_id: str
    created_at: Optional[datetime] = None
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    session_id: Optional[str] = None
    canon_scope: Optional[str] = None
    summary_type: Optional[str] = None


@dataclass
class MemoryRecord:
    """
    One stored, embedded memory row.

    When chunk_group_id is set, 0 <= chunk_index < total_chunks and every
    record sharing the group id reconstructs one source text in index order.
    """
    id: str
    persona_id: str
    personality_id: str
    text: str
    embedding: List[float]
    created_at: datetime = field(default_factory=utc_now)
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    chunk_group_id: Optional[str] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    session_id: Optional[str] = None
    canon_scope: Optional[str] = None
    summary_type: Optional[str] = None

    @property
    def is_chunk(self) -> bool:
        return self.chunk_group_id is not None

    def metadata(self) -> Dict[str, Any]:
        """Scalar metadata (no text, no embedding)."""
        return {
            "id": self.id,
            "persona_id": self.persona_id,
            "personality_id": self.personality_id,
            "created_at": self.created_at.isoformat(),
            "channel_id": self.channel_id,
            "guild_id": self.guild_id,
            "chunk_group_id": self.chunk_group_id,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "session_id": self.session_id,
            "canon_scope": self.canon_scope,
            "summary_type": self.summary_type,
        }


class MemoryQuery(BaseModel):
    """Validated retrieval options. Never persisted."""

    model_config = ConfigDict(frozen=True)

    query_text: str = ""
    persona_id: str = Field(min_length=1)
    personality_id: Optional[str] = None
    session_id: Optional[str] = None
    limit: int = Field(default=10, gt=0)
    score_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    channel_ids: Optional[List[str]] = None
    channel_budget_ratio: Optional[float] = None
    exclude_ids: Optional[List[str]] = None
    include_siblings: bool = True

    def with_overrides(self, **changes: Any) -> "MemoryQuery":
        """Copy of this query with some options replaced (re-validated)."""
        return MemoryQuery.model_validate({**self.model_dump(), **changes})


@dataclass
class SimilarityResult:
    """A retrieved memory with its similarity score."""
    record: MemoryRecord
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_sibling: bool = False

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def chunk_index(self) -> Optional[int]:
        return self.record.chunk_index


@dataclass
class AddMemoryResult:
    """Storage acknowledgement for one add_memory call."""
    memory_ids: List[str]
    inserted: int
    skipped: int
    was_chunked: bool
    original_token_count: int
    chunk_group_id: Optional[str] = None

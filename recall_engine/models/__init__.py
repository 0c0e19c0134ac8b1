"""Domain models for memory storage and response quality checks."""

from .memory import (
    MemoryMetadata,
    MemoryRecord,
    MemoryQuery,
    SimilarityResult,
    AddMemoryResult,
    utc_now,
)
from .conversation import ConversationTurn, DetectionMethod, DuplicateVerdict

__all__ = [
    "MemoryMetadata",
    "MemoryRecord",
    "MemoryQuery",
    "SimilarityResult",
    "AddMemoryResult",
    "ConversationTurn",
    "DetectionMethod",
    "DuplicateVerdict",
    "utc_now",
]

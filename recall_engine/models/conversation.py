"""Conversation turns and duplicate-detection verdicts."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class DetectionMethod(str, Enum):
    """Which detection layer flagged a duplicate."""
    EXACT_HASH = "exact-hash"
    WORD_JACCARD = "word-jaccard"
    BIGRAM = "bigram"
    ANCHOR_PREFIX = "anchor-prefix"
    SEMANTIC = "semantic-embedding"


@dataclass(frozen=True)
class ConversationTurn:
    """A single message in the caller-owned conversation history."""
    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DuplicateVerdict:
    """
    Outcome of a duplicate check.

    match_index is relative to the recency order the history was checked in
    (0 = most recent); -1 when nothing matched. similarity is the score of
    the deciding layer for a match, or the highest bigram similarity seen
    when nothing matched. near_miss marks a non-duplicate whose highest
    similarity fell in the near-miss band.
    """
    is_duplicate: bool
    match_index: int = -1
    method: Optional[DetectionMethod] = None
    similarity: float = 0.0
    near_miss: bool = False

    @classmethod
    def clean(cls, similarity: float = 0.0, near_miss: bool = False) -> "DuplicateVerdict":
        return cls(is_duplicate=False, similarity=similarity, near_miss=near_miss)

"""Storage interface the memory store talks to."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

from recall_engine.models.memory import MemoryRecord


@dataclass(frozen=True)
class SearchFilters:
    """Metadata filters applied to a similarity search."""
    persona_id: str
    personality_id: Optional[str] = None
    session_id: Optional[str] = None
    channel_ids: Optional[Tuple[str, ...]] = None
    exclude_ids: Optional[Tuple[str, ...]] = None
    score_threshold: Optional[float] = None

    def matches(self, record: MemoryRecord) -> bool:
        """Check a record against every filter except the score threshold."""
        if record.persona_id != self.persona_id:
            return False
        if self.personality_id and record.personality_id != self.personality_id:
            return False
        if self.session_id and record.session_id != self.session_id:
            return False
        if self.channel_ids and record.channel_id not in self.channel_ids:
            return False
        if self.exclude_ids and record.id in self.exclude_ids:
            return False
        return True


class MemoryRepository(ABC):
    """
    Insert / similarity-search / sibling-lookup surface over a vector index.

    Implementations raise RepositoryError on transport failure.
    """

    @abstractmethod
    def insert(self, record: MemoryRecord) -> bool:
        """
        Insert a record keyed by its id.

        Returns:
            True if inserted, False if a record with the same id already
            existed (conflict-ignore, never an error)
        """
        pass

    @abstractmethod
    def similarity_search(
        self,
        embedding: List[float],
        filters: SearchFilters,
        limit: int
    ) -> List[Tuple[MemoryRecord, float]]:
        """
        Find the records most similar to an embedding.

        Returns:
            Up to `limit` (record, cosine similarity) pairs passing the
            filters, best first
        """
        pass

    @abstractmethod
    def fetch_siblings(self, chunk_group_id: str, persona_id: str) -> List[MemoryRecord]:
        """Fetch every chunk of a group, ordered by chunk index."""
        pass

    @abstractmethod
    def count(self, persona_id: Optional[str] = None) -> int:
        """Number of stored records, optionally for one persona."""
        pass

    @abstractmethod
    def ping(self) -> None:
        """One lightweight round-trip; raises RepositoryError if unreachable."""
        pass

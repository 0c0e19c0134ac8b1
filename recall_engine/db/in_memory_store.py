"""In-process memory repository backed by numpy cosine similarity."""

import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np

from recall_engine.db.repository import MemoryRepository, SearchFilters
from recall_engine.models.memory import MemoryRecord

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class InMemoryMemoryRepository(MemoryRepository):
    """
    Memory repository that keeps every record in a dict.

    Suitable for tests and local development; nothing survives the process.
    """

    def __init__(self):
        self._records: Dict[str, MemoryRecord] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def insert(self, record: MemoryRecord) -> bool:
        with self._lock:
            if record.id in self._records:
                logger.debug(f"Memory {record.id} already stored, ignoring insert")
                return False
            self._records[record.id] = record
            self._vectors[record.id] = np.asarray(record.embedding, dtype=np.float32)
        return True

    def similarity_search(
        self,
        embedding: List[float],
        filters: SearchFilters,
        limit: int
    ) -> List[Tuple[MemoryRecord, float]]:
        query = np.asarray(embedding, dtype=np.float32)

        with self._lock:
            candidates = [r for r in self._records.values() if filters.matches(r)]
            scored = [(r, cosine_similarity(query, self._vectors[r.id])) for r in candidates]

        if filters.score_threshold is not None:
            scored = [(r, s) for r, s in scored if s >= filters.score_threshold]

        scored.sort(key=lambda pair: (pair[1], pair[0].created_at), reverse=True)
        return scored[:limit]

    def fetch_siblings(self, chunk_group_id: str, persona_id: str) -> List[MemoryRecord]:
        with self._lock:
            siblings = [
                r for r in self._records.values()
                if r.chunk_group_id == chunk_group_id and r.persona_id == persona_id
            ]
        return sorted(siblings, key=lambda r: r.chunk_index or 0)

    def count(self, persona_id: Optional[str] = None) -> int:
        with self._lock:
            if persona_id is None:
                return len(self._records)
            return sum(1 for r in self._records.values() if r.persona_id == persona_id)

    def ping(self) -> None:
        return None

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Look up one record by id."""
        with self._lock:
            return self._records.get(memory_id)

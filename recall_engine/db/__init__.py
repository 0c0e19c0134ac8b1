"""Storage adapters for the memory store."""

from .repository import MemoryRepository, SearchFilters
from .in_memory_store import InMemoryMemoryRepository

__all__ = [
    "MemoryRepository",
    "SearchFilters",
    "InMemoryMemoryRepository",
]

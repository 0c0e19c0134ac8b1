"""
Shared fixtures and deterministic fakes for the test suite.

- HashingEmbedder: bag-of-words vectors (identical text -> identical vector,
  texts with no shared words -> orthogonal vectors)
- SynonymEmbedder: HashingEmbedder that treats a few synonyms as one word
- RecordingRepository: in-memory repository that records calls and can be
  told to fail specific operations
- ScriptedInvoker: returns canned responses in order
"""

import re
import zlib
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest

from recall_engine.config.models import MemoryConfig
from recall_engine.db.in_memory_store import InMemoryMemoryRepository
from recall_engine.db.repository import SearchFilters
from recall_engine.errors import RepositoryError
from recall_engine.llm.base import LLMResponse, ModelInvoker, SamplingConfig
from recall_engine.models.memory import MemoryRecord
from recall_engine.services.embedding_service import Embedder
from recall_engine.services.token_counter import TokenCounter
from recall_engine.services.vector_memory import VectorMemoryStore

DIMENSIONS = 384


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedder."""

    def __init__(self, dimensions: int = DIMENSIONS):
        self.dimensions = dimensions
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for token in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(token.encode("utf-8")) % self.dimensions] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


class SynonymEmbedder(HashingEmbedder):
    """Bag-of-words embedder that maps known synonyms onto one word, so paraphrases embed alike."""

    SYNONYMS = {
        "forecast": "weather",
        "bright": "sunny",
        "hot": "warm",
        "ideal": "perfect",
        "lengthy": "long",
        "stroll": "walk",
        "through": "in",
    }

    def embed(self, text: str) -> List[float]:
        words = [self.SYNONYMS.get(word, word) for word in re.findall(r"\w+", text.lower())]
        return super().embed(" ".join(words))


class RecordingRepository(InMemoryMemoryRepository):
    """In-memory repository with call recording and injectable failures."""

    def __init__(self):
        super().__init__()
        self.searches: List[Dict] = []
        self.fail_search: Optional[Callable[[SearchFilters], bool]] = None
        self.search_error: Exception = RepositoryError("similarity search failed")
        self.fail_insert_at: Optional[int] = None
        self.fail_siblings = False
        self.sibling_error: Exception = RepositoryError("sibling lookup failed")
        self.fail_ping = False
        self.insert_calls = 0

    def insert(self, record: MemoryRecord) -> bool:
        self.insert_calls += 1
        if self.fail_insert_at is not None and self.insert_calls == self.fail_insert_at:
            raise RepositoryError(f"insert #{self.insert_calls} failed")
        return super().insert(record)

    def similarity_search(self, embedding, filters, limit):
        self.searches.append({"filters": filters, "limit": limit})
        if self.fail_search is not None and self.fail_search(filters):
            raise self.search_error
        return super().similarity_search(embedding, filters, limit)

    def fetch_siblings(self, chunk_group_id, persona_id):
        if self.fail_siblings:
            raise self.sibling_error
        return super().fetch_siblings(chunk_group_id, persona_id)

    def ping(self) -> None:
        if self.fail_ping:
            raise RepositoryError("unreachable")


class ScriptedInvoker(ModelInvoker):
    """Returns scripted responses in order; exceptions in the script are raised."""

    def __init__(self, responses: Sequence[Union[str, Exception]]):
        self.responses = list(responses)
        self.calls: List[Dict] = []

    async def invoke(self, messages, sampling: SamplingConfig) -> LLMResponse:
        self.calls.append({"messages": messages, "sampling": sampling})
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, model="scripted")


@pytest.fixture
def token_counter():
    return TokenCounter("estimate")


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def repository():
    return RecordingRepository()


@pytest.fixture
def memory_config():
    return MemoryConfig(embedding_dimensions=DIMENSIONS, tokenizer_model="estimate")


@pytest.fixture
def store(repository, embedder, memory_config, token_counter):
    return VectorMemoryStore(
        repository=repository,
        embedder=embedder,
        config=memory_config,
        token_counter=token_counter,
    )

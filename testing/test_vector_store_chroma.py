"""
Tests for the ChromaDB repository, run against an in-process ephemeral client.
"""

import uuid
from datetime import datetime, timedelta, timezone

import chromadb
import pytest

from conftest import HashingEmbedder
from recall_engine.db.repository import SearchFilters
from recall_engine.db.vector_store import ChromaMemoryRepository
from recall_engine.models.memory import MemoryMetadata, MemoryRecord
from recall_engine.services.vector_memory import VectorMemoryStore

CHANNEL = "123456789012345678"


@pytest.fixture
def chroma_repository():
    # Ephemeral clients share state within a process; isolate by collection name
    return ChromaMemoryRepository(
        client=chromadb.EphemeralClient(),
        collection_name=f"test-{uuid.uuid4().hex}",
    )


@pytest.fixture
def chroma_store(chroma_repository, memory_config, token_counter):
    return VectorMemoryStore(chroma_repository, HashingEmbedder(), memory_config, token_counter)


def owner(**extra):
    return MemoryMetadata(persona_id="persona-1", personality_id="bot-1", **extra)


class TestChromaMemoryRepository:
    """Test suite for ChromaMemoryRepository."""

    def test_requires_directory_or_client(self):
        """Test constructing without a location is an error."""
        with pytest.raises(ValueError):
            ChromaMemoryRepository()

    def test_insert_is_conflict_ignore(self, chroma_store, chroma_repository):
        """Test re-inserting the same memory is a no-op."""
        first = chroma_store.add_memory("Prefers window seats on trains.", owner())
        second = chroma_store.add_memory("Prefers window seats on trains.", owner())

        assert first.inserted == 1
        assert second.inserted == 0
        assert chroma_repository.count() == 1
        assert chroma_repository.count("persona-1") == 1
        assert chroma_repository.count("persona-2") == 0

    def test_query_scores_and_metadata(self, chroma_store):
        """Test scores are cosine similarities and metadata survives the round trip."""
        stored = chroma_store.add_memory("Prefers window seats on trains.", owner(channel_id=CHANNEL))

        results = chroma_store.query_memories("Prefers window seats on trains.", {"persona_id": "persona-1"})

        assert [r.id for r in results] == stored.memory_ids
        assert results[0].score == pytest.approx(1.0, abs=1e-4)
        assert results[0].record.channel_id == CHANNEL
        assert results[0].record.chunk_group_id is None

    def test_filters(self, chroma_store):
        """Test persona, channel and exclusion filters are applied in the query."""
        in_channel = chroma_store.add_memory("train journey notes one", owner(channel_id=CHANNEL))
        chroma_store.add_memory("train journey notes two", owner())
        chroma_store.add_memory("train journey notes three", MemoryMetadata(persona_id="persona-2", personality_id="bot-1"))

        base = {"persona_id": "persona-1", "score_threshold": 0.1}
        assert len(chroma_store.query_memories("train journey", base)) == 2
        scoped = chroma_store.query_memories("train journey", {**base, "channel_ids": [CHANNEL]})
        assert [r.id for r in scoped] == in_channel.memory_ids
        excluded = chroma_store.query_memories("train journey", {**base, "exclude_ids": in_channel.memory_ids})
        assert in_channel.memory_ids[0] not in {r.id for r in excluded}

    def test_equal_scores_newest_first(self, chroma_repository):
        """Test ties on score are broken by recency, newest first."""
        embedding = HashingEmbedder().embed("identical content for every record")
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day in range(6):
            chroma_repository.insert(MemoryRecord(
                id=f"m{day}",
                persona_id="persona-1",
                personality_id="bot-1",
                text=f"record {day}",
                embedding=embedding,
                created_at=start + timedelta(days=day),
            ))

        matches = chroma_repository.similarity_search(embedding, SearchFilters(persona_id="persona-1"), 6)

        assert [record.id for record, _ in matches] == ["m5", "m4", "m3", "m2", "m1", "m0"]

    def test_siblings_ordered(self, chroma_store, chroma_repository):
        """Test sibling lookup returns every chunk in index order."""
        text = "\n\n".join(" ".join(f"p{p}w{w:03d}" for w in range(150)) for p in range(4))
        stored = chroma_store.add_memory(text, owner())

        siblings = chroma_repository.fetch_siblings(stored.chunk_group_id, "persona-1")

        assert [s.id for s in siblings] == stored.memory_ids
        assert [s.chunk_index for s in siblings] == list(range(len(stored.memory_ids)))

    def test_ping_and_reset(self, chroma_store, chroma_repository):
        """Test heartbeat succeeds and reset clears the collection."""
        chroma_store.add_memory("Something to forget.", owner())

        assert chroma_store.health_check() is True
        chroma_repository.reset()
        assert chroma_repository.count() == 0

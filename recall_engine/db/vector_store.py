"""ChromaDB adapter for memory storage and similarity search."""

from datetime import datetime
from pathlib import Path
from typing import List, Dict, Optional, Any, Tuple
import logging
import os

# Disable ChromaDB telemetry to avoid noisy warnings
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
from chromadb.config import Settings

from recall_engine.db.repository import MemoryRepository, SearchFilters
from recall_engine.errors import RepositoryError
from recall_engine.models.memory import MemoryRecord

logger = logging.getLogger(__name__)

_INCLUDE_RECORD = ["documents", "metadatas", "embeddings"]


def _combine(conditions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Chroma requires $and to hold at least two conditions."""
    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _to_chroma_metadata(record: MemoryRecord) -> Dict[str, Any]:
    """Flatten a record into Chroma metadata (None values are not allowed)."""
    metadata = record.metadata()
    metadata["memory_id"] = metadata.pop("id")
    metadata["created_ts"] = record.created_at.timestamp()
    return {k: v for k, v in metadata.items() if v is not None}


def _from_chroma(memory_id: str, document: str, metadata: Dict[str, Any], embedding: Any) -> MemoryRecord:
    """Rebuild a MemoryRecord from one Chroma row."""
    return MemoryRecord(
        id=memory_id,
        persona_id=metadata["persona_id"],
        personality_id=metadata["personality_id"],
        text=document,
        embedding=[float(x) for x in embedding] if embedding is not None else [],
        created_at=datetime.fromisoformat(metadata["created_at"]),
        channel_id=metadata.get("channel_id"),
        guild_id=metadata.get("guild_id"),
        chunk_group_id=metadata.get("chunk_group_id"),
        chunk_index=metadata.get("chunk_index"),
        total_chunks=metadata.get("total_chunks"),
        session_id=metadata.get("session_id"),
        canon_scope=metadata.get("canon_scope"),
        summary_type=metadata.get("summary_type"),
    )


class ChromaMemoryRepository(MemoryRepository):
    """Memory repository stored in a single ChromaDB collection."""

    def __init__(
        self,
        persist_directory: Optional[Path] = None,
        collection_name: str = "memories",
        client: Optional[Any] = None
    ):
        """
        Initialize the repository.

        Args:
            persist_directory: Path to store ChromaDB data (ignored when client is given)
            collection_name: Collection holding every memory
            client: Pre-built Chroma client (e.g. chromadb.EphemeralClient())
        """
        if client is None:
            if persist_directory is None:
                raise ValueError("persist_directory is required when no client is provided")
            persist_directory = Path(persist_directory)
            persist_directory.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(
                path=str(persist_directory),
                settings=Settings(
                    anonymized_telemetry=False,
                    allow_reset=True
                )
            )

        self.client = client
        self.collection_name = collection_name

        try:
            self.collection = self.client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"}
            )
        except Exception as e:
            logger.error(f"Failed to get/create collection '{collection_name}': {e}")
            raise RepositoryError(f"Cannot open collection '{collection_name}': {e}") from e

        logger.info(f"ChromaMemoryRepository ready (collection: {collection_name})")

    def insert(self, record: MemoryRecord) -> bool:
        try:
            existing = self.collection.get(ids=[record.id], include=[])
            if existing["ids"]:
                logger.debug(f"Memory {record.id} already stored, ignoring insert")
                return False

            self.collection.add(
                ids=[record.id],
                documents=[record.text],
                embeddings=[record.embedding],
                metadatas=[_to_chroma_metadata(record)]
            )
            return True
        except Exception as e:
            logger.error(f"Failed to insert memory {record.id}: {e}")
            raise RepositoryError(f"Insert failed for memory {record.id}: {e}") from e

    def similarity_search(
        self,
        embedding: List[float],
        filters: SearchFilters,
        limit: int
    ) -> List[Tuple[MemoryRecord, float]]:
        conditions: List[Dict[str, Any]] = [{"persona_id": filters.persona_id}]
        if filters.personality_id:
            conditions.append({"personality_id": filters.personality_id})
        if filters.session_id:
            conditions.append({"session_id": filters.session_id})
        if filters.channel_ids:
            conditions.append({"channel_id": {"$in": list(filters.channel_ids)}})
        if filters.exclude_ids:
            conditions.append({"memory_id": {"$nin": list(filters.exclude_ids)}})

        try:
            total = self.collection.count()
            if total == 0:
                return []
            results = self.collection.query(
                query_embeddings=[embedding],
                n_results=min(limit, total),
                where=_combine(conditions),
                include=_INCLUDE_RECORD + ["distances"]
            )
        except Exception as e:
            logger.error(f"Failed to query memories: {e}")
            raise RepositoryError(f"Similarity search failed: {e}") from e

        ids = results["ids"][0] if results.get("ids") else []
        if not ids:
            return []
        documents = results["documents"][0]
        metadatas = results["metadatas"][0]
        distances = results["distances"][0]
        embeddings = results["embeddings"][0] if results.get("embeddings") is not None else [None] * len(ids)

        matches = []
        for memory_id, document, metadata, distance, vector in zip(ids, documents, metadatas, distances, embeddings):
            # Cosine space: distance = 1 - cosine similarity
            score = 1.0 - float(distance)
            if filters.score_threshold is not None and score < filters.score_threshold:
                continue
            matches.append((_from_chroma(memory_id, document, metadata, vector), score))

        # Chroma leaves equal distances in insertion order; newest wins ties
        matches.sort(key=lambda pair: (pair[1], pair[0].created_at), reverse=True)
        return matches

    def fetch_siblings(self, chunk_group_id: str, persona_id: str) -> List[MemoryRecord]:
        try:
            results = self.collection.get(
                where=_combine([
                    {"persona_id": persona_id},
                    {"chunk_group_id": chunk_group_id},
                ]),
                include=_INCLUDE_RECORD
            )
        except Exception as e:
            logger.error(f"Failed to fetch siblings for group {chunk_group_id}: {e}")
            raise RepositoryError(f"Sibling lookup failed for group {chunk_group_id}: {e}") from e

        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(results["ids"])
        records = [
            _from_chroma(memory_id, document, metadata, vector)
            for memory_id, document, metadata, vector in zip(
                results["ids"], results["documents"], results["metadatas"], embeddings
            )
        ]
        return sorted(records, key=lambda r: r.chunk_index or 0)

    def count(self, persona_id: Optional[str] = None) -> int:
        try:
            if persona_id is None:
                return self.collection.count()
            results = self.collection.get(where={"persona_id": persona_id}, include=[])
            return len(results["ids"])
        except Exception as e:
            logger.error(f"Failed to get collection count: {e}")
            raise RepositoryError(f"Count failed: {e}") from e

    def ping(self) -> None:
        try:
            self.client.heartbeat()
        except Exception as e:
            raise RepositoryError(f"ChromaDB heartbeat failed: {e}") from e

    def reset(self) -> None:
        """Delete every stored memory. Use with caution!"""
        try:
            self.client.delete_collection(name=self.collection_name)
            self.collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"}
            )
            logger.warning(f"Collection '{self.collection_name}' reset - all memories deleted")
        except Exception as e:
            logger.error(f"Failed to reset collection: {e}")
            raise RepositoryError(f"Reset failed: {e}") from e

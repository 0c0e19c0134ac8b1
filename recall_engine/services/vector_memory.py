"""
Vector memory store.

Durable storage and similarity retrieval of long-term memories. Oversized
texts are chunked transparently on write and reassembled (via sibling
expansion) on read.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from recall_engine.config.loader import format_validation_errors
from recall_engine.config.models import MemoryConfig
from recall_engine.db.repository import MemoryRepository, SearchFilters
from recall_engine.errors import EmbeddingError, MemoryValidationError
from recall_engine.models.memory import (
    AddMemoryResult,
    MemoryMetadata,
    MemoryQuery,
    MemoryRecord,
    SimilarityResult,
    utc_now,
)
from recall_engine.services.embedding_service import Embedder
from recall_engine.services.memory_ids import chunk_group_id, memory_id
from recall_engine.services.text_chunker import TextChunker
from recall_engine.services.token_counter import TokenCounter
from recall_engine.services.waterfall_retrieval import WaterfallRetriever

logger = logging.getLogger(__name__)

QueryOptions = Union[MemoryQuery, Mapping[str, Any]]


def build_query(options: QueryOptions, **overrides: Any) -> MemoryQuery:
    """
    Validate retrieval options into a MemoryQuery.

    Raises:
        MemoryValidationError: If any option is malformed
    """
    try:
        if isinstance(options, MemoryQuery):
            return options.with_overrides(**overrides) if overrides else options
        return MemoryQuery.model_validate({**dict(options), **overrides})
    except ValidationError as e:
        errors = format_validation_errors(e.errors())
        raise MemoryValidationError(f"Invalid memory query: {'; '.join(errors)}", errors) from e


def _to_result(record: MemoryRecord, score: float, is_sibling: bool = False) -> SimilarityResult:
    return SimilarityResult(
        record=record,
        content=record.text,
        score=score,
        metadata=record.metadata(),
        is_sibling=is_sibling,
    )


class VectorMemoryStore:
    """
    Stores and retrieves embedded memories for many personas.

    Stateless between calls: every request carries its own options, and
    nothing is cached across requests except inside the embedder.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        embedder: Embedder,
        config: Optional[MemoryConfig] = None,
        token_counter: Optional[TokenCounter] = None
    ):
        self.repository = repository
        self.embedder = embedder
        self.config = config or MemoryConfig()
        self.token_counter = token_counter or TokenCounter(self.config.tokenizer_model)
        self.chunker = TextChunker(self.token_counter, self.config.embedding_chunk_limit)
        self.retriever = WaterfallRetriever(
            self,
            default_ratio=self.config.channel_budget_ratio,
            channel_id_pattern=self.config.channel_id_pattern,
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def add_memory(self, text: str, metadata: MemoryMetadata) -> AddMemoryResult:
        """
        Store a memory, chunking it when it exceeds the embedding limit.

        Every chunk is embedded before anything is written, then inserted
        under its content-derived id. Re-storing identical content is a
        no-op; a failed call can simply be retried and only the missing
        chunks get inserted.

        Raises:
            MemoryValidationError: Empty text or missing owner ids
            EmbeddingError: Embedding failed for any chunk
            RepositoryError: Any chunk insert failed
        """
        self._validate_metadata(text, metadata)
        created_at = metadata.created_at or utc_now()

        split = self.chunker.split_by_token_budget(text, self.config.embedding_chunk_limit)
        group_id = None
        if split.was_chunked:
            group_id = chunk_group_id(metadata.persona_id, metadata.personality_id, text)
            logger.info(
                f"Splitting oversized memory into {len(split.chunks)} chunks "
                f"(group={group_id}, tokens={split.original_token_count}, persona={metadata.persona_id})"
            )

        embeddings = self._embed_many(split.chunks)
        records = []
        total = len(split.chunks)
        for index, (chunk, embedding) in enumerate(zip(split.chunks, embeddings)):
            chunk_index = index if split.was_chunked else None
            self._warn_if_oversized(chunk, chunk_index, group_id)
            records.append(MemoryRecord(
                id=memory_id(metadata.persona_id, metadata.personality_id, chunk, chunk_index),
                persona_id=metadata.persona_id,
                personality_id=metadata.personality_id,
                text=chunk,
                embedding=embedding,
                created_at=created_at,
                channel_id=metadata.channel_id,
                guild_id=metadata.guild_id,
                chunk_group_id=group_id,
                chunk_index=chunk_index,
                total_chunks=total if split.was_chunked else None,
                session_id=metadata.session_id,
                canon_scope=metadata.canon_scope,
                summary_type=metadata.summary_type,
            ))

        inserted = 0
        for record in records:
            try:
                if self.repository.insert(record):
                    inserted += 1
            except Exception as e:
                logger.error(
                    f"Failed to add memory for persona {metadata.persona_id} "
                    f"(chunk {record.chunk_index}, group {group_id}): {e}"
                )
                raise

        skipped = len(records) - inserted
        logger.debug(
            f"Stored memory for persona {metadata.persona_id}: "
            f"{inserted} inserted, {skipped} already present"
        )
        return AddMemoryResult(
            memory_ids=[r.id for r in records],
            inserted=inserted,
            skipped=skipped,
            was_chunked=split.was_chunked,
            original_token_count=split.original_token_count,
            chunk_group_id=group_id,
        )

    @staticmethod
    def _validate_metadata(text: str, metadata: MemoryMetadata):
        errors = []
        if not text or not text.strip():
            errors.append("text: must not be empty")
        if not metadata.persona_id:
            errors.append("persona_id: must not be empty")
        if not metadata.personality_id:
            errors.append("personality_id: must not be empty")
        if errors:
            raise MemoryValidationError(f"Invalid memory: {'; '.join(errors)}", errors)

    def _warn_if_oversized(self, chunk: str, chunk_index: Optional[int], group_id: Optional[str]):
        tokens = self.token_counter.count_tokens(chunk)
        if tokens > self.config.embedding_max_tokens:
            logger.warning(
                f"Text exceeds embedding token limit ({tokens} > {self.config.embedding_max_tokens}, "
                f"chunk {chunk_index}, group {group_id}) - embedding may be truncated"
            )

    def _embed(self, text: str) -> List[float]:
        return self._embed_many([text])[0]

    def _embed_many(self, texts: List[str]) -> List[List[float]]:
        try:
            embeddings = self.embedder.embed_many(texts)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Embedding call failed for {len(texts)} text(s): {e}")
            raise EmbeddingError(f"Embedding call failed: {e}") from e

        returned = 0 if embeddings is None else len(embeddings)
        if returned != len(texts):
            raise EmbeddingError(f"Embedding service returned {returned} vectors for {len(texts)} texts")
        return [self._check_embedding(embedding) for embedding in embeddings]

    def _check_embedding(self, embedding: Optional[List[float]]) -> List[float]:
        if embedding is None:
            raise EmbeddingError("Embedding service returned no result")
        embedding = [float(x) for x in embedding]
        if not embedding:
            raise EmbeddingError("Embedding service returned an empty vector")
        expected = self.config.embedding_dimensions
        if expected is not None and len(embedding) != expected:
            raise EmbeddingError(f"Invalid embedding dimensions: expected {expected}, got {len(embedding)}")
        return embedding

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def build_query(self, options: QueryOptions, **overrides: Any) -> MemoryQuery:
        """Validate options, filling unset limit, threshold and sibling flag from config."""
        if not isinstance(options, MemoryQuery):
            options = {
                "limit": self.config.default_limit,
                "score_threshold": self.config.default_score_threshold,
                "include_siblings": self.config.include_siblings,
                **dict(options),
            }
        return build_query(options, **overrides)

    def query_memories(self, query_text: str, options: QueryOptions) -> List[SimilarityResult]:
        """
        Similarity search for one persona.

        Returns results best-first (ties by recency), followed by any sibling
        chunks of matched chunk groups when include_siblings is set.
        Empty/whitespace queries and an empty store return [] without
        calling the embedder. Transport failures propagate.

        Raises:
            MemoryValidationError: If options are malformed (before any I/O)
            EmbeddingError / RepositoryError: On transport failure
        """
        query = self.build_query(options, query_text=query_text or "")

        if not query.query_text.strip():
            logger.debug(f"Empty query for persona {query.persona_id}, returning no results")
            return []
        if self.repository.count() == 0:
            return []

        embedding = self._embed(query.query_text)
        filters = SearchFilters(
            persona_id=query.persona_id,
            personality_id=query.personality_id,
            session_id=query.session_id,
            channel_ids=tuple(query.channel_ids) if query.channel_ids else None,
            exclude_ids=tuple(query.exclude_ids) if query.exclude_ids else None,
            score_threshold=query.score_threshold,
        )
        hits = self.repository.similarity_search(embedding, filters, query.limit)
        results = [_to_result(record, score) for record, score in hits]

        if query.include_siblings and results:
            results = self._expand_with_siblings(results, query.persona_id)

        logger.debug(
            f"Retrieved {len(results)} memories for persona {query.persona_id} "
            f"(personality: {query.personality_id or 'all'})"
        )
        return results

    def _expand_with_siblings(self, results: List[SimilarityResult], persona_id: str) -> List[SimilarityResult]:
        """Append missing chunks of every matched chunk group, deduplicated by id."""
        seen = {r.id for r in results}
        groups: List[str] = []
        for result in results:
            if not result.record.is_chunk:
                continue
            group = result.record.chunk_group_id
            if group not in groups:
                groups.append(group)
        if not groups:
            return results

        expanded = list(results)
        for group in groups:
            try:
                siblings = self.repository.fetch_siblings(group, persona_id)
            except Exception as e:
                logger.error(f"Failed to fetch chunk siblings for group {group}: {e}")
                continue
            for record in siblings:
                if record.id not in seen:
                    seen.add(record.id)
                    expanded.append(_to_result(record, 1.0, is_sibling=True))

        logger.debug(f"Sibling expansion added {len(expanded) - len(results)} chunks from {len(groups)} groups")
        return expanded

    def query_memories_with_channel_scoping(self, query_text: str, options: QueryOptions) -> List[SimilarityResult]:
        """Channel-first retrieval with global backfill (see WaterfallRetriever)."""
        return self.retriever.query(query_text, options)

    def health_check(self) -> bool:
        """One lightweight round-trip to the repository. Never raises."""
        try:
            self.repository.ping()
            return True
        except Exception as e:
            logger.error(f"Memory store health check failed: {e}")
            return False

    def stats(self, persona_id: Optional[str] = None) -> Dict[str, Any]:
        """Basic store statistics."""
        return {
            "total_memories": self.repository.count(persona_id),
            "embedding_dimensions": self.config.embedding_dimensions,
            "chunk_limit": self.config.embedding_chunk_limit,
        }

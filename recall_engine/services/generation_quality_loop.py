"""
Generation Quality Loop

Drives one response through generate -> check -> escalate until it is
accepted or the attempt budget runs out.

States:
    GENERATING  build the prompt for the current retry config, invoke the model once
    CHECKING    strip intra-turn repetition, then compare against recent assistant turns
    ESCALATING  duplicate (or empty) and attempts remain: next retry config
    ACCEPTED    terminal, the response is clean
    EXHAUSTED   terminal, still a duplicate at max attempts; returned but flagged

Memories are retrieved once per run; only the history window and sampling
parameters change between attempts. The accepted exchange is persisted at
most once, after the loop finishes.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from recall_engine.config.models import DuplicateDetectionConfig, GenerationConfig
from recall_engine.errors import GenerationCancelledError
from recall_engine.llm.base import ModelInvoker, SamplingConfig
from recall_engine.models.conversation import ConversationTurn, DuplicateVerdict
from recall_engine.models.memory import MemoryMetadata, MemoryQuery, SimilarityResult
from recall_engine.services.cross_turn_detection import get_recent_assistant_messages, is_recent_duplicate
from recall_engine.services.duplicate_detection import remove_duplicate_response
from recall_engine.services.embedding_service import Embedder
from recall_engine.services.prompt_assembly import build_messages, format_memories_for_prompt, reduce_history
from recall_engine.services.retry_escalation import RetryConfig, build_retry_config
from recall_engine.services.vector_memory import VectorMemoryStore

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    GENERATING = "generating"
    CHECKING = "checking"
    ESCALATING = "escalating"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


@dataclass
class GenerationRequest:
    """
    One user turn to answer.

    memory_query drives retrieval (skipped when None or when the loop has
    no store); memory_metadata enables persisting the final exchange.
    """
    user_message: str
    history: List[ConversationTurn] = field(default_factory=list)
    system_prompt: str = ""
    memory_query: Optional[MemoryQuery] = None
    memory_metadata: Optional[MemoryMetadata] = None
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class GenerationResult:
    """Final response plus how the loop got there."""
    content: str
    accepted: bool
    attempts: int
    state: LoopState
    verdict: Optional[DuplicateVerdict] = None
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    memories: List[SimilarityResult] = field(default_factory=list)
    duplicate_retries: int = 0
    empty_retries: int = 0
    persisted: bool = False
    model: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.state is LoopState.EXHAUSTED


class GenerationQualityLoop:
    """Bounded generate/check/escalate loop around a model invoker."""

    def __init__(
        self,
        invoker: ModelInvoker,
        memory_store: Optional[VectorMemoryStore] = None,
        generation_config: Optional[GenerationConfig] = None,
        detection_config: Optional[DuplicateDetectionConfig] = None,
        embedder: Optional[Embedder] = None
    ):
        """
        Args:
            invoker: Model backend
            memory_store: Enables retrieval, persistence and (by default) the semantic duplicate layer
            generation_config: Attempt budget and sampling defaults
            detection_config: Duplicate detection thresholds
            embedder: Embedder for the semantic layer; defaults to the memory store's
        """
        self.invoker = invoker
        self.memory_store = memory_store
        self.config = generation_config or GenerationConfig()
        self.detection = detection_config or DuplicateDetectionConfig()
        if embedder is None and memory_store is not None:
            embedder = memory_store.embedder
        self.embedder = embedder if self.detection.semantic_check else None

    async def run(self, request: GenerationRequest) -> GenerationResult:
        """
        Produce a response for the request.

        Raises:
            GenerationCancelledError: If the cancel event is set before an attempt
            TransportError: Retrieval or model invocation failed
        """
        memories = await self._retrieve(request)
        memory_block = format_memories_for_prompt(memories)
        recent = get_recent_assistant_messages(request.history, self.detection.recent_message_window)
        max_attempts = self.config.max_attempts

        attempt = 1
        retry = build_retry_config(attempt)
        duplicate_retries = 0
        empty_retries = 0
        fallback = None

        while True:
            if request.cancel_event is not None and request.cancel_event.is_set():
                logger.info(f"[QUALITY-LOOP] Cancelled before attempt {attempt}")
                raise GenerationCancelledError(attempt)

            logger.debug(f"[QUALITY-LOOP] {LoopState.GENERATING.value} attempt {attempt}/{max_attempts} {retry.to_dict()}")
            messages = build_messages(
                request.system_prompt,
                reduce_history(request.history, retry.history_reduction_percent),
                request.user_message,
                memory_block,
            )
            response = await self.invoker.invoke(messages, self._sampling(retry))

            content = self._clean(response.content or "")
            verdict = None
            if not content.strip() and self.config.retry_on_empty:
                empty_retries += 1
                logger.warning(f"[QUALITY-LOOP] Empty response on attempt {attempt}/{max_attempts}")
            else:
                verdict = await self._check(content, recent)
                if not verdict.is_duplicate:
                    if attempt > 1:
                        logger.info(
                            f"[QUALITY-LOOP] Accepted on attempt {attempt} "
                            f"({duplicate_retries} duplicate, {empty_retries} empty retries)"
                        )
                    result = GenerationResult(
                        content=content,
                        accepted=True,
                        attempts=attempt,
                        state=LoopState.ACCEPTED,
                        verdict=verdict,
                        retry_config=retry,
                        memories=memories,
                        duplicate_retries=duplicate_retries,
                        empty_retries=empty_retries,
                        model=response.model,
                    )
                    break
                duplicate_retries += 1
                logger.warning(
                    f"[QUALITY-LOOP] Duplicate response on attempt {attempt}/{max_attempts} "
                    f"(match {verdict.match_index} via {verdict.method.value})"
                )

            if content.strip():
                fallback = content

            if attempt >= max_attempts:
                final = content if content.strip() else (fallback or content)
                logger.warning(
                    f"[QUALITY-LOOP] Exhausted {max_attempts} attempts; returning flagged response "
                    f"({duplicate_retries} duplicate, {empty_retries} empty retries)"
                )
                result = GenerationResult(
                    content=final,
                    accepted=False,
                    attempts=attempt,
                    state=LoopState.EXHAUSTED,
                    verdict=verdict,
                    retry_config=retry,
                    memories=memories,
                    duplicate_retries=duplicate_retries,
                    empty_retries=empty_retries,
                    model=response.model,
                )
                break

            attempt += 1
            retry = build_retry_config(attempt)
            logger.info(f"[QUALITY-LOOP] {LoopState.ESCALATING.value} to attempt {attempt}: {retry.to_dict()}")

        result.persisted = await self._persist(request, result)
        return result

    async def _retrieve(self, request: GenerationRequest) -> List[SimilarityResult]:
        if self.memory_store is None or request.memory_query is None:
            return []
        query_text = request.memory_query.query_text or request.user_message
        return await asyncio.to_thread(
            self.memory_store.query_memories_with_channel_scoping,
            query_text,
            request.memory_query,
        )

    async def _check(self, content: str, recent: List[str]) -> DuplicateVerdict:
        """Cross-turn check; runs in a worker thread when the semantic layer embeds."""
        check = functools.partial(
            is_recent_duplicate,
            content,
            recent,
            threshold=self.detection.similarity_threshold,
            min_length=self.detection.min_cross_turn_length,
            word_jaccard_threshold=self.detection.word_jaccard_threshold,
            near_miss_threshold=self.detection.near_miss_threshold,
            embedder=self.embedder,
            semantic_threshold=self.detection.semantic_similarity_threshold,
        )
        if self.embedder is None:
            return check()
        return await asyncio.to_thread(check)

    def _sampling(self, retry: RetryConfig) -> SamplingConfig:
        return SamplingConfig(
            temperature=(
                retry.temperature_override
                if retry.temperature_override is not None
                else self.config.temperature
            ),
            frequency_penalty=(
                retry.frequency_penalty_override
                if retry.frequency_penalty_override is not None
                else self.config.frequency_penalty
            ),
            max_tokens=self.config.max_response_tokens,
        )

    def _clean(self, content: str) -> str:
        return remove_duplicate_response(
            content,
            min_length=self.detection.min_intra_turn_length,
            anchor_length=self.detection.anchor_length,
            threshold=self.detection.intra_turn_similarity_threshold,
        )

    async def _persist(self, request: GenerationRequest, result: GenerationResult) -> bool:
        """Store the exchange once. Failures are logged, never raised."""
        if self.memory_store is None or request.memory_metadata is None:
            return False
        if not result.content.strip():
            return False
        if result.exhausted and not self.config.persist_exhausted:
            logger.info("[QUALITY-LOOP] Skipping memory storage for exhausted response")
            return False

        text = f"{{user}}: {request.user_message}\n{{assistant}}: {result.content}"
        try:
            await asyncio.to_thread(self.memory_store.add_memory, text, request.memory_metadata)
        except Exception as e:
            logger.error(f"[QUALITY-LOOP] Failed to store memory, continuing without it: {e}")
            return False
        return True

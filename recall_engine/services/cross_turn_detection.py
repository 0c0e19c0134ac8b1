"""
Cross-turn duplicate detection.

Flags a new response that repeats an earlier assistant turn (typically a
provider-side cache returning the same completion for a different
prompt). Detection runs an ordered list of layers per history entry and
stops at the first match:

1. exact content hash (case and surrounding whitespace ignored)
2. word Jaccard over normalized word sets
3. character-bigram Dice similarity

When an embedder is supplied, a fourth semantic layer compares embedding
cosine similarity, catching paraphrases the lexical layers miss. It runs
only after the lexical layers found nothing, and its failures are logged
and skipped.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from recall_engine.models.conversation import ConversationTurn, DetectionMethod, DuplicateVerdict
from recall_engine.services.duplicate_detection import (
    content_hash,
    string_similarity,
    word_jaccard_similarity,
)
from recall_engine.services.embedding_service import Embedder

logger = logging.getLogger(__name__)

MIN_LENGTH_FOR_SIMILARITY_CHECK = 30
DEFAULT_SIMILARITY_THRESHOLD = 0.85
NEAR_MISS_THRESHOLD = 0.70
WORD_JACCARD_THRESHOLD = 0.75
SEMANTIC_SIMILARITY_THRESHOLD = 0.88
DEFAULT_RECENT_MESSAGES = 5

ASSISTANT_ROLE = "assistant"


def _snippet(content: str, max_length: int = 60) -> str:
    return content if len(content) <= max_length else content[:max_length] + "..."


def exact_hash_score(candidate: str, previous: str) -> float:
    return 1.0 if content_hash(candidate) == content_hash(previous) else 0.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


@dataclass(frozen=True)
class DetectionLayer:
    """One independently testable duplicate predicate."""
    method: DetectionMethod
    score: Callable[[str, str], float]
    threshold: float

    def matches(self, candidate: str, previous: str) -> bool:
        return self.score(candidate, previous) >= self.threshold


def build_detection_layers(
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    word_jaccard_threshold: float = WORD_JACCARD_THRESHOLD
) -> List[DetectionLayer]:
    """Layers in evaluation order, cheapest first."""
    return [
        DetectionLayer(DetectionMethod.EXACT_HASH, exact_hash_score, 1.0),
        DetectionLayer(DetectionMethod.WORD_JACCARD, word_jaccard_similarity, word_jaccard_threshold),
        DetectionLayer(DetectionMethod.BIGRAM, string_similarity, similarity_threshold),
    ]


def is_cross_turn_duplicate(
    new_response: str,
    previous_response: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    min_length: int = MIN_LENGTH_FOR_SIMILARITY_CHECK
) -> bool:
    """Pairwise bigram check between a new response and one earlier response."""
    if len(new_response) < min_length or len(previous_response) < min_length:
        return False

    similarity = string_similarity(new_response, previous_response)
    if similarity >= threshold:
        logger.warning(
            f"[CROSS-TURN] Cross-turn duplication detected (similarity {similarity:.3f} >= {threshold}). "
            f"Possible provider-side caching."
        )
        return True
    return False


def is_recent_duplicate(
    new_response: str,
    recent_messages: Sequence[str],
    threshold: Optional[float] = None,
    min_length: int = MIN_LENGTH_FOR_SIMILARITY_CHECK,
    word_jaccard_threshold: float = WORD_JACCARD_THRESHOLD,
    near_miss_threshold: float = NEAR_MISS_THRESHOLD,
    embedder: Optional[Embedder] = None,
    semantic_threshold: float = SEMANTIC_SIMILARITY_THRESHOLD
) -> DuplicateVerdict:
    """
    Check a new response against recent assistant messages.

    Args:
        new_response: The candidate response
        recent_messages: Earlier assistant messages, most recent first
        threshold: Bigram similarity threshold (default 0.85)
        min_length: Candidate and history entries shorter than this are ignored
        word_jaccard_threshold: Word Jaccard threshold (default 0.75)
        near_miss_threshold: Lower bound of the near-miss band
        embedder: Enables the semantic layer when given
        semantic_threshold: Embedding cosine similarity threshold (default 0.88)

    Returns:
        DuplicateVerdict; match_index counts from the most recent message
    """
    if threshold is None:
        threshold = DEFAULT_SIMILARITY_THRESHOLD

    if len(new_response) < min_length:
        logger.debug(f"[CROSS-TURN] Skipping check, response too short ({len(new_response)} chars)")
        return DuplicateVerdict.clean()

    layers = build_detection_layers(threshold, word_jaccard_threshold)
    highest = 0.0
    highest_index = -1

    for index, previous in enumerate(recent_messages):
        if len(previous) < min_length:
            continue

        for layer in layers:
            score = layer.score(new_response, previous)
            if layer.method is DetectionMethod.BIGRAM and score > highest:
                highest, highest_index = score, index
            if score >= layer.threshold:
                logger.warning(
                    f"[CROSS-TURN] Duplicate via {layer.method.value} "
                    f"(score {score:.3f}, {index + 1} turn(s) ago): {_snippet(new_response)!r}"
                )
                return DuplicateVerdict(
                    is_duplicate=True,
                    match_index=index,
                    method=layer.method,
                    similarity=score,
                )

    if embedder is not None:
        semantic = find_semantic_duplicate(new_response, recent_messages, embedder, semantic_threshold, min_length)
        if semantic is not None:
            return semantic

    near_miss = near_miss_threshold <= highest < threshold
    if recent_messages:
        if near_miss:
            logger.info(
                f"[CROSS-TURN] NEAR-MISS: similarity {highest * 100:.1f}% to message {highest_index} "
                f"is high but below {threshold * 100:.0f}% threshold"
            )
        else:
            logger.debug(
                f"[CROSS-TURN] No duplicate across {len(recent_messages)} messages "
                f"(max similarity {highest:.3f})"
            )
    return DuplicateVerdict.clean(similarity=highest, near_miss=near_miss)


def find_semantic_duplicate(
    new_response: str,
    recent_messages: Sequence[str],
    embedder: Embedder,
    threshold: float = SEMANTIC_SIMILARITY_THRESHOLD,
    min_length: int = MIN_LENGTH_FOR_SIMILARITY_CHECK
) -> Optional[DuplicateVerdict]:
    """
    Semantic layer: embedding cosine similarity against recent messages.

    Returns a duplicate verdict for the most similar eligible message when
    it reaches the threshold, otherwise None. Embedding failures skip the
    layer instead of failing the check.
    """
    if len(new_response) < min_length:
        return None
    candidates = [(index, message) for index, message in enumerate(recent_messages) if len(message) >= min_length]
    if not candidates:
        return None

    texts = [new_response] + [message for _, message in candidates]
    try:
        vectors = embedder.embed_many(texts)
        if len(vectors) != len(texts):
            logger.warning(
                f"[CROSS-TURN] Semantic check skipped, got {len(vectors)} embeddings for {len(texts)} texts"
            )
            return None
        scores = [cosine_similarity(vectors[0], vector) for vector in vectors[1:]]
    except Exception as e:
        logger.warning(f"[CROSS-TURN] Semantic check skipped, embedding failed: {e}")
        return None

    best = max(range(len(scores)), key=lambda k: scores[k])
    similarity = scores[best]
    index = candidates[best][0]
    if similarity < threshold:
        logger.debug(f"[CROSS-TURN] Semantic check passed (max similarity {similarity:.3f} < {threshold})")
        return None

    logger.warning(
        f"[CROSS-TURN] Duplicate via {DetectionMethod.SEMANTIC.value} "
        f"(score {similarity:.3f}, {index + 1} turn(s) ago): {_snippet(new_response)!r}"
    )
    return DuplicateVerdict(
        is_duplicate=True,
        match_index=index,
        method=DetectionMethod.SEMANTIC,
        similarity=similarity,
    )


def get_recent_assistant_messages(
    history: Sequence[ConversationTurn],
    max_messages: int = DEFAULT_RECENT_MESSAGES
) -> List[str]:
    """
    Most-recent-first contents of assistant turns.

    Roles are matched exactly; a role like "Assistant" or " assistant" is
    not an assistant turn.
    """
    messages = []
    for turn in reversed(history):
        if len(messages) >= max_messages:
            break
        if turn.role == ASSISTANT_ROLE:
            messages.append(turn.content)
    return messages

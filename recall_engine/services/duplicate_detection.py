"""
Duplicate response detection: similarity primitives and intra-turn cleanup.

Intra-turn duplication happens when a model misses its stop token and
starts the same answer over again inside one response. The primitives
here (bigram Dice similarity, word Jaccard, content hash) are shared with
the cross-turn detector.
"""

import hashlib
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from recall_engine.models.conversation import DetectionMethod

logger = logging.getLogger(__name__)

MIN_LENGTH_FOR_DUPLICATION_CHECK = 100
ANCHOR_LENGTH = 30
INTRA_TURN_SIMILARITY_THRESHOLD = 0.8

_MARKDOWN_EMPHASIS = re.compile(r"[*_~]{1,2}([^*_~]+)[*_~]{1,2}")
_PUNCTUATION = re.compile(r"[^\w\s']")
_WHITESPACE = re.compile(r"\s+")


# ============================================================================
# Similarity primitives
# ============================================================================

def string_similarity(a: str, b: str) -> float:
    """
    Dice coefficient over overlapping character bigrams.

    Comparison is case-insensitive and ignores surrounding whitespace.
    Repeated bigrams are matched at most as often as they occur in both.

    Returns:
        Similarity between 0.0 (nothing shared) and 1.0 (identical)
    """
    if a == b:
        return 1.0

    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if len(s1) == 1 or len(s2) == 1:
        return 0.0

    bigrams1 = Counter(s1[i:i + 2] for i in range(len(s1) - 1))
    bigrams2 = Counter(s2[i:i + 2] for i in range(len(s2) - 1))
    matches = sum((bigrams1 & bigrams2).values())

    return 2.0 * matches / ((len(s1) - 1) + (len(s2) - 1))


def normalize_for_comparison(text: str) -> str:
    """
    Aggressive normalization for word-level comparison.

    Lowercases, strips markdown emphasis, replaces punctuation (apostrophes
    excepted) with spaces and collapses whitespace.
    """
    text = text.lower()
    text = _MARKDOWN_EMPHASIS.sub(r"\1", text)
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def word_jaccard_similarity(a: str, b: str) -> float:
    """Jaccard index of the normalized word sets of a and b."""
    normalized1 = normalize_for_comparison(a)
    normalized2 = normalize_for_comparison(b)

    if normalized1 == normalized2:
        return 1.0
    if not normalized1 or not normalized2:
        return 0.0

    words1 = set(normalized1.split(" "))
    words2 = set(normalized2.split(" "))
    intersection = len(words1 & words2)
    union = len(words1) + len(words2) - intersection
    return intersection / union


def content_hash(content: str) -> str:
    """Short SHA-256 of case- and surrounding-whitespace-normalized content."""
    normalized = content.lower().strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


# ============================================================================
# Intra-turn detection
# ============================================================================

@dataclass(frozen=True)
class IntraTurnMatch:
    """Where a response restarts itself, and how the restart was confirmed."""
    split_point: int
    similarity: float
    variant: str  # "second-prefix", "first-prefix" or "similarity"
    method: DetectionMethod = DetectionMethod.ANCHOR_PREFIX


def find_intra_turn_duplicate(
    content: str,
    min_length: int = MIN_LENGTH_FOR_DUPLICATION_CHECK,
    anchor_length: int = ANCHOR_LENGTH,
    threshold: float = INTRA_TURN_SIMILARITY_THRESHOLD
) -> Optional[IntraTurnMatch]:
    """
    Locate a restart of the response inside itself.

    The first `anchor_length` characters (fewer for short texts) are searched
    for later in the text. At each occurrence the text is split in two and
    the halves compared:

    - second half is a prefix of the first: truncated restart
    - first half is a prefix of the second: runaway [A][A][A] repetition
    - otherwise bigram similarity, only when the halves are within 2x length

    Returns:
        The first confirmed split, or None
    """
    length = len(content)
    if length < min_length:
        return None

    anchor_size = min(anchor_length, length // 3)
    if anchor_size == 0:
        return None
    anchor = content[:anchor_size]

    candidate = content.find(anchor, anchor_size)
    while candidate != -1:
        first = content[:candidate].strip().lower()
        second = content[candidate:].strip().lower()
        if not second:
            break
        if not first:
            # Whitespace-only anchor
            candidate = content.find(anchor, candidate + 1)
            continue

        similarity = 0.0
        variant = None
        if first.startswith(second):
            similarity, variant = 1.0, "second-prefix"
        elif second.startswith(first):
            similarity, variant = 1.0, "first-prefix"
        else:
            ratio = len(first) / len(second)
            if 0.5 < ratio < 2.0:
                similarity, variant = string_similarity(first, second), "similarity"

        if variant and similarity >= threshold:
            return IntraTurnMatch(split_point=candidate, similarity=similarity, variant=variant)

        candidate = content.find(anchor, candidate + 1)

    return None


def remove_duplicate_response(
    content: str,
    min_length: int = MIN_LENGTH_FOR_DUPLICATION_CHECK,
    anchor_length: int = ANCHOR_LENGTH,
    threshold: float = INTRA_TURN_SIMILARITY_THRESHOLD
) -> str:
    """
    Collapse a response that repeats itself down to its first copy.

    Texts below `min_length` and texts without a confirmed restart are
    returned unchanged. Otherwise the part before the restart is returned
    with trailing whitespace removed.
    """
    match = find_intra_turn_duplicate(content, min_length, anchor_length, threshold)
    if match is None:
        return content

    deduplicated = content[:match.split_point].rstrip()
    logger.warning(
        f"[DUPLICATE] Removed intra-turn duplicate content "
        f"({len(content)} -> {len(deduplicated)} chars, split at {match.split_point}, "
        f"similarity {match.similarity:.3f} via {match.method.value}/{match.variant}). "
        f"Model likely missed its stop token."
    )
    return deduplicated

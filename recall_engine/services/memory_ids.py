"""Deterministic identifiers for memories and chunk groups."""

import hashlib
import uuid
from typing import Optional

# Fixed namespace so ids are stable across processes and deployments
MEMORY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "recall-engine/memories")


def _text_digest(text: str) -> str:
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


def memory_id(
    persona_id: str,
    personality_id: str,
    text: str,
    chunk_index: Optional[int] = None
) -> str:
    """
    Id for one stored row.

    Identical (persona, personality, text, chunk index) always maps to the
    same id, which is what makes re-inserting a memory a no-op.
    """
    content = text if chunk_index is None else f"{text}::chunk::{chunk_index}"
    return str(uuid.uuid5(MEMORY_NAMESPACE, f"{persona_id}:{personality_id}:{_text_digest(content)}"))


def chunk_group_id(persona_id: str, personality_id: str, text: str) -> str:
    """Id shared by every chunk of one oversized source text."""
    return str(uuid.uuid5(MEMORY_NAMESPACE, f"chunk-group:{persona_id}:{personality_id}:{_text_digest(text)}"))

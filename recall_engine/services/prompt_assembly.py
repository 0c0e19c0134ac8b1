"""Prompt assembly from retrieved memories and conversation history."""

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from recall_engine.models.conversation import ConversationTurn
from recall_engine.models.memory import SimilarityResult
from recall_engine.services.text_chunker import reassemble_chunks, sort_chunks_by_index

logger = logging.getLogger(__name__)


def _merged(memories: Sequence[SimilarityResult]) -> List[Tuple[str, float]]:
    groups: Dict[str, List[SimilarityResult]] = {}
    for memory in memories:
        group = memory.record.chunk_group_id
        if group:
            groups.setdefault(group, []).append(memory)

    merged = []
    emitted = set()
    for memory in memories:
        group = memory.record.chunk_group_id
        if not group:
            merged.append((memory.content, memory.score))
        elif group not in emitted:
            emitted.add(group)
            ordered = sort_chunks_by_index(groups[group])
            merged.append((reassemble_chunks([m.content for m in ordered]), memory.score))
    return merged


def merge_chunk_groups(memories: Sequence[SimilarityResult]) -> List[str]:
    """
    Memory texts in retrieval order, with chunk groups reassembled.

    Each chunk group appears once, at the position of its first retrieved
    chunk, as the full reassembled text.
    """
    return [text for text, _ in _merged(memories)]


def format_memories_for_prompt(memories: Sequence[SimilarityResult], include_metadata: bool = False) -> str:
    """
    Format retrieved memories as a numbered list for the system prompt.

    Args:
        memories: Retrieval results (channel results first, then global)
        include_metadata: Append the score of each memory's first retrieved chunk

    Returns:
        Formatted string ("" when there are no memories)
    """
    lines = []
    for i, (text, score) in enumerate(_merged(memories), 1):
        suffix = f" [sim={score:.2f}]" if include_metadata else ""
        lines.append(f"{i}. {text}{suffix}")
    return "\n".join(lines)


def reduce_history(history: Sequence[ConversationTurn], percent: Optional[float]) -> List[ConversationTurn]:
    """Drop the oldest floor(len * percent) turns."""
    if not percent or percent <= 0:
        return list(history)
    drop = math.floor(len(history) * min(percent, 1.0))
    if drop:
        logger.debug(f"Reducing history by {drop} of {len(history)} turns")
    return list(history[drop:])


def build_messages(
    system_prompt: str,
    history: Sequence[ConversationTurn],
    user_message: str,
    memory_block: str = ""
) -> List[Dict[str, str]]:
    """
    Message list for the model invoker.

    The system message carries the memory block; history follows in
    chronological order, then the current user message.
    """
    system_content = system_prompt
    if memory_block:
        system_content = (
            f"{system_prompt}\n\n" if system_prompt else ""
        ) + f"## Relevant Memories\n\n{memory_block}"

    messages = []
    if system_content:
        messages.append({"role": "system", "content": system_content})
    messages.extend({"role": turn.role, "content": turn.content} for turn in history)
    messages.append({"role": "user", "content": user_message})
    return messages

"""Tests for memory formatting and prompt message assembly."""

from recall_engine.models.conversation import ConversationTurn
from recall_engine.models.memory import MemoryRecord, SimilarityResult
from recall_engine.services.prompt_assembly import (
    build_messages,
    format_memories_for_prompt,
    merge_chunk_groups,
    reduce_history,
)


def result(memory_id, text, score=0.9, group=None, index=None):
    record = MemoryRecord(
        id=memory_id,
        persona_id="persona-1",
        personality_id="bot-1",
        text=text,
        embedding=[],
        chunk_group_id=group,
        chunk_index=index,
        total_chunks=3 if group else None,
    )
    return SimilarityResult(record=record, content=text, score=score, metadata=record.metadata())


class TestFormatMemories:
    """Test suite for format_memories_for_prompt."""

    def test_numbered_list(self):
        """Test memories are numbered in retrieval order."""
        memories = [result("a", "Likes tea."), result("b", "Has a cat.")]
        assert format_memories_for_prompt(memories) == "1. Likes tea.\n2. Has a cat."

    def test_empty(self):
        """Test no memories formats to an empty string."""
        assert format_memories_for_prompt([]) == ""

    def test_include_metadata(self):
        """Test scores are appended when requested."""
        formatted = format_memories_for_prompt([result("a", "Likes tea.", score=0.8765)], include_metadata=True)
        assert formatted == "1. Likes tea. [sim=0.88]"

    def test_chunk_group_reassembled(self):
        """Test a chunk hit plus its siblings renders as one memory."""
        memories = [
            result("c1", "{user} (continued): middle", score=0.7, group="g", index=1),
            result("x", "Unrelated.", score=0.6),
            result("c0", "{user}: start", score=1.0, group="g", index=0),
            result("c2", "end", score=1.0, group="g", index=2),
        ]

        assert merge_chunk_groups(memories) == ["{user}: start\n\nmiddle\n\nend", "Unrelated."]
        assert format_memories_for_prompt(memories, include_metadata=True).splitlines()[0].endswith("[sim=0.70]")


class TestReduceHistory:
    """Test suite for reduce_history."""

    def test_no_reduction(self):
        """Test None or zero keeps every turn."""
        turns = [ConversationTurn(role="user", content=str(i)) for i in range(4)]
        assert reduce_history(turns, None) == turns
        assert reduce_history(turns, 0) == turns

    def test_drops_oldest_floor(self):
        """Test floor(len * percent) oldest turns are removed."""
        turns = [ConversationTurn(role="user", content=str(i)) for i in range(10)]
        reduced = reduce_history(turns, 0.3)

        assert [t.content for t in reduced] == [str(i) for i in range(3, 10)]
        assert len(reduce_history(turns[:3], 0.3)) == 3


class TestBuildMessages:
    """Test suite for build_messages."""

    def test_with_memories(self):
        """Test the memory block is appended to the system prompt."""
        history = [ConversationTurn(role="user", content="hi"), ConversationTurn(role="assistant", content="hello")]
        messages = build_messages("Be kind.", history, "How are you?", "1. Likes tea.")

        assert messages == [
            {"role": "system", "content": "Be kind.\n\n## Relevant Memories\n\n1. Likes tea."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "How are you?"},
        ]

    def test_without_system_prompt(self):
        """Test no system message is sent when there is nothing to say."""
        assert build_messages("", [], "Hi") == [{"role": "user", "content": "Hi"}]

    def test_memories_without_system_prompt(self):
        """Test memories alone still produce a system message."""
        messages = build_messages("", [], "Hi", "1. Likes tea.")
        assert messages[0] == {"role": "system", "content": "## Relevant Memories\n\n1. Likes tea."}

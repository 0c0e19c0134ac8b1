"""
Tests for the token-budget text chunker.

Tests cover:
- Under-limit and empty input
- Paragraph, sentence and word fallbacks
- Force-splitting of oversized single words
- Speaker continuation prefixes and reassembly
- Determinism
"""

import pytest

from recall_engine.services.text_chunker import (
    TextChunker,
    reassemble_chunks,
    sort_chunks_by_index,
)
from recall_engine.services.token_counter import TokenCounter


@pytest.fixture
def chunker():
    return TextChunker(TokenCounter("estimate"), default_limit=50)


def paragraph(tag: str, words: int = 30) -> str:
    return " ".join(f"{tag}{i:03d}" for i in range(words))


class TestSplitByTokenBudget:
    """Test suite for TextChunker.split_by_token_budget."""

    def test_under_limit_returns_original(self, chunker):
        """Test text within the limit comes back as a single unchanged chunk."""
        text = "A short memory about tea."
        result = chunker.split_by_token_budget(text)

        assert result.chunks == [text]
        assert result.was_chunked is False
        assert result.original_token_count == len(text) // 4

    def test_empty_and_whitespace_input(self, chunker):
        """Test empty input yields no chunks."""
        for text in ("", "   \n\n  "):
            result = chunker.split_by_token_budget(text)
            assert result.chunks == []
            assert result.original_token_count == 0
            assert result.was_chunked is False

    def test_splits_on_paragraphs(self, chunker):
        """Test each oversized paragraph group becomes its own chunk."""
        paragraphs = [paragraph(tag) for tag in ("aa", "bb", "cc")]
        text = "\n\n".join(paragraphs)

        result = chunker.split_by_token_budget(text)

        assert result.was_chunked is True
        assert result.chunks == paragraphs

    def test_small_paragraphs_are_packed(self):
        """Test paragraphs that fit together share a chunk."""
        chunker = TextChunker(TokenCounter("estimate"), default_limit=60)
        parts = [paragraph(tag, 5) for tag in ("aa", "bb", "cc", "dd", "ee", "ff", "gg", "hh")]
        text = "\n\n".join(parts)

        result = chunker.split_by_token_budget(text)

        assert result.was_chunked is True
        assert len(result.chunks) < len(parts)
        assert "\n\n" in result.chunks[0]

    def test_falls_back_to_sentences(self, chunker):
        """Test a paragraph over the limit is split at sentence boundaries."""
        sentences = [f"Sentence {paragraph(tag, 12)}." for tag in ("one", "two", "three", "four")]
        text = " ".join(sentences)

        result = chunker.split_by_token_budget(text)

        assert result.was_chunked is True
        for chunk in result.chunks:
            assert chunk.endswith(".")

    def test_falls_back_to_words(self, chunker):
        """Test a single huge sentence is split on whitespace."""
        text = paragraph("word", 120)
        result = chunker.split_by_token_budget(text)

        assert result.was_chunked is True
        assert " ".join(result.chunks) == text
        for chunk in result.chunks:
            assert chunker.token_counter.count_tokens(chunk) <= 50

    def test_force_splits_long_word(self, chunker):
        """Test a word longer than the budget (e.g. a URL) is split by characters."""
        url = "https://example.com/" + "x" * 1000
        result = chunker.split_by_token_budget(url)

        assert result.was_chunked is True
        assert "".join(result.chunks) == url
        assert all(chunk for chunk in result.chunks)

    def test_never_returns_empty_chunks(self, chunker):
        """Test repeated blank lines never produce empty chunks."""
        text = "\n\n\n\n".join(paragraph(tag) for tag in ("xx", "yy", "zz"))
        result = chunker.split_by_token_budget(text)
        assert all(chunk.strip() for chunk in result.chunks)

    def test_deterministic(self, chunker):
        """Test identical input always yields identical boundaries."""
        text = "\n\n".join(paragraph(tag, 40) for tag in ("a", "b", "c", "d"))
        first = chunker.split_by_token_budget(text)
        second = chunker.split_by_token_budget(text)
        assert first.chunks == second.chunks

    def test_invalid_limit(self, chunker):
        """Test a non-positive explicit limit is rejected."""
        with pytest.raises(ValueError):
            chunker.split_by_token_budget(paragraph("a", 200), limit=-5)


class TestSpeakerContinuity:
    """Test suite for speaker continuation prefixes."""

    def test_mid_turn_chunk_gets_prefix(self, chunker):
        """Test a chunk starting mid-turn is labelled with the speaker."""
        text = "{assistant}: " + paragraph("aa") + "\n\n" + paragraph("bb")
        result = chunker.split_by_token_budget(text)

        assert result.was_chunked is True
        assert result.chunks[0].startswith("{assistant}: ")
        assert result.chunks[1].startswith("{assistant} (continued): ")

    def test_chunk_starting_with_marker_has_no_prefix(self, chunker):
        """Test chunks that begin with a speaker marker are left alone."""
        text = "{user}: " + paragraph("qq") + "\n\n{assistant}: " + paragraph("rr")
        result = chunker.split_by_token_budget(text)

        assert result.chunks[1].startswith("{assistant}: ")
        assert "(continued)" not in result.chunks[1]

    def test_speaker_tracks_latest_marker(self, chunker):
        """Test the prefix follows the most recent speaker."""
        text = (
            "{user}: " + paragraph("ak", 10) + "\n{assistant}: " + paragraph("rp", 20)
            + "\n\n" + paragraph("mo")
        )
        result = chunker.split_by_token_budget(text)

        assert result.chunks[-1].startswith("{assistant} (continued): ")

    def test_no_prefix_without_speakers(self, chunker):
        """Test plain prose gets no prefixes."""
        text = "\n\n".join(paragraph(tag) for tag in ("aa", "bb"))
        result = chunker.split_by_token_budget(text)
        assert not any("(continued)" in chunk for chunk in result.chunks)


class TestReassembly:
    """Test suite for reassemble_chunks and sort_chunks_by_index."""

    def test_reassemble_round_trip(self, chunker):
        """Test chunks reassemble into the original paragraph text."""
        text = "{user}: " + paragraph("aa") + "\n\n" + paragraph("bb") + "\n\n" + paragraph("cc")
        result = chunker.split_by_token_budget(text)

        assert reassemble_chunks(result.chunks) == text

    def test_reassemble_edge_cases(self):
        """Test empty and single-chunk input."""
        assert reassemble_chunks([]) == ""
        assert reassemble_chunks(["{user} (continued): only"]) == "{user} (continued): only"

    def test_sort_by_index(self):
        """Test sorting by chunk_index attribute or metadata, missing index first."""
        class Item:
            def __init__(self, name, index=None):
                self.name = name
                self.metadata = {"chunk_index": index} if index is not None else {}

        items = [Item("c", 2), Item("none"), Item("a", 0), Item("b", 1)]
        ordered = sort_chunks_by_index(items)

        assert [i.name for i in ordered] == ["none", "a", "b", "c"]
        assert [i.name for i in items] == ["c", "none", "a", "b"]

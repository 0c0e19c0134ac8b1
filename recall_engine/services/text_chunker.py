"""
Token-budget text chunker.

Splits oversized text at natural boundaries (paragraphs, then sentences,
then words) so every chunk fits the embedding model's input limit.
Conversation transcripts marked with {user}: / {assistant}: lines keep
their speaker context: a chunk that starts mid-turn is prefixed with
"{speaker} (continued): ".

Chunking is deterministic for a given token counter, which keeps
content-derived chunk ids stable across retries.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from recall_engine.services.token_counter import TokenCounter

logger = logging.getLogger(__name__)

SPEAKER_PATTERN = re.compile(r"^\{(user|assistant)\}:", re.IGNORECASE)
CONTINUATION_PATTERN = re.compile(r"^\{(?:user|assistant)\} \(continued\): ", re.IGNORECASE)
PARAGRAPH_SPLIT = re.compile(r"\n\n+")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
WORD_SPLIT = re.compile(r"\s+")

# Estimated tokens for the separator re-inserted between pieces
SPACE_TOKENS = 1
PARAGRAPH_TOKENS = 2

MAX_SPLIT_DEPTH = 10


@dataclass
class ChunkResult:
    """Result of splitting one text."""
    chunks: List[str]
    original_token_count: int
    was_chunked: bool


@dataclass
class _ChunkState:
    chunks: List[str] = field(default_factory=list)
    current: str = ""
    current_tokens: int = 0

    def flush(self):
        if self.current.strip():
            self.chunks.append(self.current.strip())
        self.current = ""
        self.current_tokens = 0

    def start(self, piece: str, tokens: int):
        self.flush()
        self.current = piece
        self.current_tokens = tokens

    def append(self, piece: str, separator: str, tokens: int, separator_tokens: int):
        if self.current:
            self.current = f"{self.current}{separator}{piece}"
            self.current_tokens += tokens + separator_tokens
        else:
            self.current = piece
            self.current_tokens = tokens


def _detect_speaker(line: str) -> Optional[str]:
    match = SPEAKER_PATTERN.match(line)
    return match.group(1).lower() if match else None


def _last_speaker(text: str) -> Optional[str]:
    for line in reversed(text.split("\n")):
        speaker = _detect_speaker(line)
        if speaker:
            return speaker
    return None


class TextChunker:
    """Splits text into token-bounded segments."""

    def __init__(self, token_counter: TokenCounter, default_limit: int = 480):
        self.token_counter = token_counter
        self.default_limit = default_limit

    def split_by_token_budget(self, text: str, limit: Optional[int] = None) -> ChunkResult:
        """
        Split text so each chunk fits within `limit` tokens.

        Args:
            text: The text to split
            limit: Maximum tokens per chunk (defaults to the configured limit)

        Returns:
            ChunkResult; chunks == [text] and was_chunked False when the text
            already fits, chunks == [] for empty or whitespace-only input
        """
        if not text or not text.strip():
            return ChunkResult(chunks=[], original_token_count=0, was_chunked=False)

        limit = limit or self.default_limit
        if limit <= 0:
            raise ValueError(f"Token limit must be positive, got {limit}")

        original_tokens = self.token_counter.count_tokens(text)
        if original_tokens <= limit:
            return ChunkResult(chunks=[text], original_token_count=original_tokens, was_chunked=False)

        initial_speaker = _detect_speaker(text.split("\n")[0])
        chunks = self._split_paragraphs(text, limit)
        chunks = self._add_continuation_prefixes(chunks, initial_speaker)

        logger.debug(f"Split {original_tokens} tokens into {len(chunks)} chunks (limit {limit})")
        return ChunkResult(chunks=chunks, original_token_count=original_tokens, was_chunked=True)

    def _split_paragraphs(self, text: str, limit: int) -> List[str]:
        state = _ChunkState()

        for paragraph in PARAGRAPH_SPLIT.split(text):
            tokens = self.token_counter.count_tokens(paragraph)
            if tokens > limit:
                state.flush()
                self._split_sentences(SENTENCE_SPLIT.split(paragraph), limit, state)
            elif state.current_tokens + tokens + PARAGRAPH_TOKENS > limit:
                state.start(paragraph, tokens)
            else:
                state.append(paragraph, "\n\n", tokens, PARAGRAPH_TOKENS)

        state.flush()
        return [chunk for chunk in state.chunks if chunk]

    def _split_sentences(self, sentences: List[str], limit: int, state: _ChunkState):
        for sentence in sentences:
            tokens = self.token_counter.count_tokens(sentence)
            if tokens > limit:
                state.flush()
                self._split_words(WORD_SPLIT.split(sentence), limit, state)
            elif state.current_tokens + tokens + SPACE_TOKENS > limit:
                state.start(sentence, tokens)
            else:
                state.append(sentence, " ", tokens, SPACE_TOKENS)

    def _split_words(self, words: List[str], limit: int, state: _ChunkState):
        for word in words:
            if not word:
                continue
            tokens = self.token_counter.count_tokens(word)
            if tokens > limit:
                state.flush()
                state.chunks.extend(self._split_long_word(word, limit))
            elif state.current_tokens + tokens + SPACE_TOKENS > limit:
                state.start(word, tokens)
            else:
                state.append(word, " ", tokens, SPACE_TOKENS)

    def _split_long_word(self, word: str, limit: int, depth: int = 0) -> List[str]:
        """Force-split a single word (e.g. a huge URL) by characters."""
        if depth >= MAX_SPLIT_DEPTH or self.token_counter.fits(word, limit):
            return [word]

        step = max(1, (limit - 50) * 3)
        if step >= len(word):
            step = max(1, len(word) // 2)

        pieces = []
        for start in range(0, len(word), step):
            piece = word[start:start + step]
            if self.token_counter.fits(piece, limit):
                pieces.append(piece)
            else:
                pieces.extend(self._split_long_word(piece, limit, depth + 1))
        return pieces

    @staticmethod
    def _add_continuation_prefixes(chunks: List[str], initial_speaker: Optional[str]) -> List[str]:
        if len(chunks) <= 1:
            return chunks

        result = [chunks[0]]
        speaker = _last_speaker(chunks[0]) or initial_speaker

        for chunk in chunks[1:]:
            if _detect_speaker(chunk.split("\n")[0]):
                result.append(chunk)
            elif speaker:
                result.append(f"{{{speaker}}} (continued): {chunk}")
            else:
                result.append(chunk)
            speaker = _last_speaker(chunk) or speaker

        return result


def reassemble_chunks(chunks: Sequence[str]) -> str:
    """Join ordered chunks back into one text, dropping continuation prefixes."""
    if not chunks:
        return ""
    if len(chunks) == 1:
        return chunks[0]
    cleaned = [chunks[0]] + [CONTINUATION_PATTERN.sub("", chunk, count=1) for chunk in chunks[1:]]
    return "\n\n".join(cleaned)


def _chunk_index_of(item: Any) -> int:
    index = getattr(item, "chunk_index", None)
    if index is None and isinstance(getattr(item, "metadata", None), dict):
        index = item.metadata.get("chunk_index")
    return index or 0


def sort_chunks_by_index(items: Sequence[Any]) -> List[Any]:
    """
    Sort chunk results by chunk index (missing index counts as 0).

    Accepts anything exposing `chunk_index` directly or in a `metadata` dict.
    Returns a new list; the input is left untouched.
    """
    return sorted(items, key=_chunk_index_of)

"""
Token counting for chunk budgets.

Counts come from the embedding model's own Hugging Face tokenizer when
the configured name is a hub id, so chunk limits line up with what the
embedder will actually truncate. Any other name (e.g. "estimate") uses
a 4-characters-per-token approximation. Counts are deterministic for a
given name, which the chunker depends on.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Character-based estimate, at least 1 for non-empty text."""
    return max(1, len(text) // CHARS_PER_TOKEN)


def is_hub_id(name: str) -> bool:
    """Hub ids look like 'org/model'; tagged local names ('model:tag') never are."""
    return "/" in name and ":" not in name


class TokenCounter:
    """Counts tokens with a hub tokenizer, or estimates them."""

    # model name -> tokenizer, or None when loading failed (not retried)
    _tokenizers: Dict[str, Optional[Any]] = {}

    def __init__(self, model_name: str = "BAAI/bge-small-en-v1.5"):
        self.model_name = model_name
        self._tokenizer = self._resolve(model_name)

    @classmethod
    def _resolve(cls, model_name: str) -> Optional[Any]:
        if model_name in cls._tokenizers:
            return cls._tokenizers[model_name]
        if not is_hub_id(model_name):
            logger.debug(f"'{model_name}' is not a hub id, estimating token counts")
            return None

        from transformers import AutoTokenizer

        try:
            tokenizer = AutoTokenizer.from_pretrained(model_name)
            logger.info(f"Token counts for chunking use the {model_name} tokenizer")
        except Exception as e:
            logger.warning(f"Could not load tokenizer {model_name} ({e}); estimating token counts instead")
            tokenizer = None
        cls._tokenizers[model_name] = tokenizer
        return tokenizer

    @property
    def is_exact(self) -> bool:
        return self._tokenizer is not None

    def count_tokens(self, text: str) -> int:
        """Tokens in text, excluding special tokens (0 for empty text)."""
        if not text:
            return 0
        if self._tokenizer is None:
            return estimate_tokens(text)
        return len(self._tokenizer.encode(text, add_special_tokens=False))

    def fits(self, text: str, limit: int) -> bool:
        return self.count_tokens(text) <= limit

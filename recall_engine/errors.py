"""Exception types shared across the memory and generation layers."""

from typing import List, Optional


class RecallEngineError(Exception):
    """Base exception for recall engine operations."""
    pass


class TransportError(RecallEngineError):
    """An external collaborator (embedding, model, repository) could not be reached."""
    pass


class EmbeddingError(TransportError):
    """Embedding generation failed or returned an unusable vector."""
    pass


class RepositoryError(TransportError):
    """The storage/vector query surface failed."""
    pass


class MemoryValidationError(RecallEngineError, ValueError):
    """Malformed query options or memory metadata, rejected before any I/O."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


class GenerationCancelledError(RecallEngineError):
    """Generation was cancelled before an attempt could start."""

    def __init__(self, attempt: int):
        self.attempt = attempt
        super().__init__(f"Generation cancelled before attempt {attempt}")

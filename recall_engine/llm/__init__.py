"""LLM integration layer."""

from .base import LLMError, LLMResponse, ModelInvoker, SamplingConfig

__all__ = [
    "LLMError",
    "LLMResponse",
    "ModelInvoker",
    "SamplingConfig",
]

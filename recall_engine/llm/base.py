"""Model invoker interface consumed by the generation quality loop."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel

from recall_engine.errors import TransportError


class LLMResponse(BaseModel):
    """LLM response model."""
    content: str
    model: Optional[str] = None
    finish_reason: Optional[str] = None


class LLMError(TransportError):
    """Model invocation failed (transport or provider error)."""
    pass


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling parameters for one invocation."""
    temperature: float = 0.7
    frequency_penalty: Optional[float] = None
    max_tokens: int = 2048


class ModelInvoker(ABC):
    """
    Anything that can run one chat completion.

    Implementations own provider selection, parameter translation and any
    transport-level retries; the quality loop calls invoke() exactly once
    per attempt.
    """

    @abstractmethod
    async def invoke(self, messages: List[Dict[str, str]], sampling: SamplingConfig) -> LLMResponse:
        """
        Generate a completion for a list of chat messages.

        Args:
            messages: List of message dicts with 'role' and 'content'
            sampling: Sampling parameters for this attempt

        Returns:
            LLMResponse with generated content

        Raises:
            LLMError: If generation fails
        """
        pass

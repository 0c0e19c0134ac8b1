"""Services package."""

from .embedding_service import Embedder, EmbeddingService
from .token_counter import TokenCounter
from .vector_memory import VectorMemoryStore
from .waterfall_retrieval import WaterfallRetriever
from .generation_quality_loop import GenerationQualityLoop, GenerationRequest, GenerationResult

__all__ = [
    'Embedder',
    'EmbeddingService',
    'TokenCounter',
    'VectorMemoryStore',
    'WaterfallRetriever',
    'GenerationQualityLoop',
    'GenerationRequest',
    'GenerationResult',
]

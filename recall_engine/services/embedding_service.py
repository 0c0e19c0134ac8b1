"""
Sentence-transformers embedding backend.

Models are loaded once per process and kept on the CPU. Vectors are
L2-normalized, so cosine similarity equals the dot product.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Anything that turns text into a fixed-dimension float vector."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        pass

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts in order. Backends with native batching override this."""
        return [self.embed(text) for text in texts]


class EmbeddingService(Embedder):
    """Embedder backed by a locally loaded SentenceTransformer."""

    # Shared across instances; loading a model is slow
    _models: Dict[str, SentenceTransformer] = {}

    def __init__(
        self,
        model_name: str = "BAAI/bge-small-en-v1.5",
        cache_size: int = 1024,
        batch_size: int = 32
    ):
        """
        Args:
            model_name: sentence-transformers model id (bge-small: 384 dims, 512 token input)
            cache_size: Texts whose vectors are kept per instance (0 disables caching)
            batch_size: Encoder batch size for embed_many
        """
        self.model_name = model_name
        self.cache_size = cache_size
        self.batch_size = batch_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        # Instances are shared across worker threads
        self._cache_lock = threading.Lock()
        self.model = self._load_model(model_name)
        self.dimensions = self.model.get_sentence_embedding_dimension()

    @classmethod
    def _load_model(cls, model_name: str) -> SentenceTransformer:
        model = cls._models.get(model_name)
        if model is None:
            logger.info(f"Loading embedding model: {model_name}")
            # CPU keeps accelerator memory free for the generation backend
            model = SentenceTransformer(model_name, device="cpu")
            cls._models[model_name] = model
            logger.info(
                f"Embedding model ready: {model_name} "
                f"({model.get_sentence_embedding_dimension()} dims, CPU)"
            )
        return model

    def _cached(self, text: str) -> Optional[List[float]]:
        with self._cache_lock:
            vector = self._cache.get(text)
            if vector is not None:
                self._cache.move_to_end(text)
            return vector

    def _remember(self, text: str, vector: List[float]) -> None:
        if self.cache_size <= 0:
            return
        with self._cache_lock:
            self._cache[text] = vector
            self._cache.move_to_end(text)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts in one encoder pass, skipping any already cached.

        Encoder failures propagate to the caller.
        """
        vectors: List[Optional[List[float]]] = [self._cached(text) for text in texts]
        missing = [i for i, vector in enumerate(vectors) if vector is None]
        if missing:
            encoded = self.model.encode(
                [texts[i] for i in missing],
                batch_size=self.batch_size,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False
            ).tolist()
            for i, vector in zip(missing, encoded):
                vectors[i] = vector
                self._remember(texts[i], vector)
            logger.debug(f"Encoded {len(missing)} of {len(texts)} texts ({len(texts) - len(missing)} cached)")
        return vectors

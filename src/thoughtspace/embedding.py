"""Text embeddings via sentence-transformers.

The model loads lazily on first use to avoid the multi-second cold start
when a process only needs scans (decay, highways, lineage).
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .constants import DEFAULT_EMBEDDING_DIMENSION, DEFAULT_EMBEDDING_MODEL
from .errors import EmbeddingError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    @property
    def dimension(self) -> int: ...

    def embed(self, text: str) -> list[float]: ...


class SentenceTransformerEmbedder:
    """Normalized sentence embeddings (cosine-ready)."""

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL):
        self.model_name = model_name
        self._model = None
        self._dims: int | None = None
        self._load_lock = threading.Lock()

    def _load(self):
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model ({self.model_name})...")
                self._model = SentenceTransformer(self.model_name)
                self._dims = self._model.get_sentence_embedding_dimension()
                logger.info(f"Embedding model loaded (dim={self._dims})")
            except (ImportError, OSError, RuntimeError) as e:
                raise EmbeddingError(f"Embedding model {self.model_name} failed to load: {e}") from e
            return self._model

    @property
    def dimension(self) -> int:
        if self._dims is None:
            self._load()
        return self._dims or DEFAULT_EMBEDDING_DIMENSION

    def embed(self, text: str) -> list[float]:
        model = self._load()
        try:
            vector = model.encode(text, normalize_embeddings=True)
        except (RuntimeError, ValueError, TypeError) as e:
            raise EmbeddingError(f"Embedding model error: {e}") from e
        return vector.tolist()

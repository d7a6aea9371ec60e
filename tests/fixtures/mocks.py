"""
Mock Objects for Testing.
Provides deterministic stand-ins for embedding providers.
"""

import hashlib
from typing import Dict, List, Optional, Sequence

from tiered_memory.utils.embedding_client import EmbeddingProvider


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embedding provider for testing.

    Texts found in ``vectors`` get that exact vector; anything else is
    embedded as a hashed bag of words.

    Usage:
        provider = FakeEmbeddingProvider({"cats": [1.0, 0.0]})
        vector = await provider.embed("cats")
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        dimension: int = 16,
        model: str = "fake-embedding"
    ):
        self.vectors = dict(vectors or {})
        self._dimension = dimension
        self._model = model
        self.calls: List[str] = []
        self.raise_error: Optional[Exception] = None
        self.closed = False

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model(self) -> str:
        return self._model

    def set_error(self, error: Optional[Exception]) -> None:
        """Set an error to raise on every subsequent call."""
        self.raise_error = error

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.raise_error:
            raise self.raise_error
        if text in self.vectors:
            return list(self.vectors[text])
        return self._hashed(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed(text) for text in texts]

    async def close(self) -> None:
        self.closed = True

    def _hashed(self, text: str) -> List[float]:
        vector = [0.0] * self._dimension
        for word in text.lower().split():
            index = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self._dimension
            vector[index] += 1.0
        return vector

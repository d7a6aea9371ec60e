"""
Embedding generation client for vector operations.
Supports multiple providers: OpenAI, Ollama, or Sentence Transformers.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
import numpy as np

from tiered_memory.config.settings import MemorySettings
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("embeddings")


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        """Return the embedding model name."""
        pass

    async def close(self) -> None:
        """Release any network resources held by the provider."""
        return None


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embedding generation through the OpenAI embeddings endpoint.
    Defaults to text-embedding-3-small.
    """

    _DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1"
    ):
        self.base_url = base_url.rstrip("/")
        self._model = model
        self.client = httpx.AsyncClient(
            timeout=60.0,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        self._dimension = self._DIMENSIONS.get(model, 1536)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in one request."""
        try:
            response = await self.client.post(
                f"{self.base_url}/embeddings",
                json={
                    "model": self._model,
                    "input": texts,
                    "encoding_format": "float",
                }
            )
            response.raise_for_status()
            data = response.json()["data"]
            # The API may return items out of order
            data.sort(key=lambda item: item["index"])
            return [item["embedding"] for item in data]
        except Exception as e:
            logger.error("Embedding generation failed", provider="openai", error=str(e))
            raise

    async def close(self) -> None:
        await self.client.aclose()


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from a local Ollama server (``/api/embeddings``).

    The endpoint takes one prompt per request, so batches fan out with at
    most ``max_concurrency`` requests in flight. The reported dimension is
    the known size for the model until the first response fixes it.
    """

    _DIMENSIONS = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }

    def __init__(
        self,
        base_url: str,
        model: str = "nomic-embed-text",
        max_concurrency: int = 4
    ):
        self.base_url = base_url.rstrip("/")
        self._model = model
        self.client = httpx.AsyncClient(timeout=60.0)
        self._dimension = self._DIMENSIONS.get(model.split(":")[0], 768)
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> List[float]:
        async with self._semaphore:
            try:
                response = await self.client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": self._model, "prompt": text},
                )
                response.raise_for_status()
                vector = response.json().get("embedding")
            except Exception as e:
                logger.error("Embedding generation failed", provider="ollama", model=self._model, error=str(e))
                raise

        if not vector:
            logger.error("Empty embedding returned", provider="ollama", model=self._model)
            raise ValueError(f"Ollama returned no embedding for model {self._model}")

        self._dimension = len(vector)
        return vector

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))

    async def close(self) -> None:
        await self.client.aclose()


class SentenceTransformerProvider(EmbeddingProvider):
    """
    In-process embeddings with sentence-transformers.

    The package is an optional extra; it is imported, and the model
    loaded, on the first embed call. Encoding runs in a worker thread.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", normalize: bool = True):
        self.model_name = model_name
        self.normalize = normalize
        self._model = None
        self._dimension = 384
        self._load_lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model(self) -> str:
        return self.model_name

    async def _ensure_model(self):
        async with self._load_lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError as e:
                    raise ImportError(
                        "sentence-transformers is not installed; "
                        "install the 'local-embeddings' extra of tiered-memory"
                    ) from e

                logger.info("Loading sentence-transformers model", model=self.model_name)
                self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
                self._dimension = self._model.get_sentence_embedding_dimension()
        return self._model

    async def _encode(self, payload):
        model = await self._ensure_model()
        return await asyncio.to_thread(
            model.encode,
            payload,
            convert_to_numpy=True,
            normalize_embeddings=self.normalize,
        )

    async def embed(self, text: str) -> List[float]:
        return (await self._encode(text)).tolist()

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return (await self._encode(texts)).tolist()


def build_embedding_provider(config: MemorySettings) -> Optional[EmbeddingProvider]:
    """
    Create the configured embedding provider.

    Returns None when embeddings are disabled or the provider is missing
    its credentials; the semantic index then runs in substring mode.
    """
    if not config.enable_embeddings:
        logger.info("Embeddings disabled by configuration")
        return None

    if config.embedding_provider == "openai":
        if not config.openai_api_key:
            logger.warning("OpenAI API key not found - semantic index will use substring matching")
            return None
        return OpenAIEmbeddingProvider(
            api_key=config.openai_api_key,
            model=config.embedding_model,
            base_url=config.openai_base_url,
        )

    if config.embedding_provider == "ollama":
        if not config.ollama_url:
            logger.warning("OLLAMA_URL not configured - semantic index will use substring matching")
            return None
        return OllamaEmbeddingProvider(
            base_url=config.ollama_url,
            model=_local_model_name(config.embedding_model, "nomic-embed-text"),
        )

    return SentenceTransformerProvider(
        model_name=_local_model_name(config.embedding_model, "all-MiniLM-L6-v2")
    )


def _local_model_name(configured: str, default: str) -> str:
    """OpenAI model names are meaningless to local providers."""
    if configured.startswith("text-embedding-"):
        return default
    return configured


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Calculate cosine similarity between two embeddings."""
    if not a or not b:
        return 0.0

    a_np = np.asarray(a, dtype=float)
    b_np = np.asarray(b, dtype=float)
    if a_np.shape != b_np.shape:
        return 0.0

    norm = np.linalg.norm(a_np) * np.linalg.norm(b_np)
    if norm == 0:
        return 0.0
    return float(np.dot(a_np, b_np) / norm)

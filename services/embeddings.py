"""
Embedding service for semantic search.

Text embeddings feed the relevance term of memory retrieval. The service
either calls an OpenRouter embedding endpoint or produces a deterministic
hash-based vector, which is also the fallback the cognition engine uses
whenever the remote service is unavailable.
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Protocol

import httpx
import numpy as np

from services.errors import ServiceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 256


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    async def embed(self, text: str) -> list[float]: ...


def simple_embed(text: str, dim: int = DEFAULT_DIMENSION) -> list[float]:
    """
    Generate a deterministic hash-based embedding.

    The same text always yields the same unit vector. Word hashes add a small
    bag-of-words signal so texts sharing words end up closer together.

    Args:
        text: Text to embed.
        dim: Dimension of the embedding.

    Returns:
        Embedding vector of length ``dim``.
    """
    text = text.lower().strip()

    hash_bytes = hashlib.sha256(text.encode()).digest()
    rng = np.random.default_rng(int.from_bytes(hash_bytes[:8], byteorder="big"))
    embedding = rng.standard_normal(dim)

    for i, word in enumerate(text.split()):
        word_hash = hashlib.md5(word.encode()).digest()
        word_idx = int.from_bytes(word_hash[:4], byteorder="big") % dim
        embedding[word_idx] += 0.5 * (1.0 / (i + 1))

    norm = np.linalg.norm(embedding)
    if norm > 0:
        embedding = embedding / norm

    return embedding.tolist()


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is zero."""
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.clip(np.dot(a_arr, b_arr) / (norm_a * norm_b), -1.0, 1.0))


class EmbeddingService:
    """
    Text embeddings with a bounded in-memory cache.

    Calls OpenRouter's embedding endpoint when an API key is configured and
    ``use_simple`` is off; otherwise every vector comes from ``simple_embed``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "openai/text-embedding-3-small",
        use_simple: bool = True,
        dimension: int = DEFAULT_DIMENSION,
        timeout: float = 30.0,
        cache_size: int = 4096,
    ):
        """
        Initialize the embedding service.

        Args:
            api_key: OpenRouter API key (optional in simple mode).
            base_url: API base URL.
            model: Embedding model to use.
            use_simple: Use hash-based embeddings instead of the API.
            dimension: Vector length, requested from the API as well.
            timeout: Request timeout in seconds.
            cache_size: Most recently used vectors kept in memory.
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.use_simple = use_simple
        self.dimension = dimension
        self.timeout = timeout
        self.cache_size = cache_size

        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._semaphore = asyncio.Semaphore(5)

    @property
    def remote(self) -> bool:
        return bool(self.api_key) and not self.use_simple

    async def embed(self, text: str) -> list[float]:
        """
        Generate an embedding for the given text.

        Raises:
            ServiceUnavailable: The API call failed or returned no usable vector.
        """
        cache_key = hashlib.md5(f"{self.model}:{text}".encode()).hexdigest()
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._cache.move_to_end(cache_key)
            return cached

        if self.remote:
            embedding = await self._api_embed(text)
        else:
            embedding = simple_embed(text, self.dimension)

        self._cache[cache_key] = embedding
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return embedding

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

    async def _api_embed(self, text: str) -> list[float]:
        async with self._semaphore:
            try:
                async with self._get_client() as client:
                    response = await client.post(
                        "/embeddings",
                        json={
                            "model": self.model,
                            "input": text,
                            "dimensions": self.dimension,
                        },
                    )
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Embedding request failed: {e}")
                raise ServiceUnavailable(f"Embedding request failed: {e}") from e

        try:
            vector = [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ServiceUnavailable(f"Embedding response contained no usable vector: {e}") from e
        if not vector:
            raise ServiceUnavailable("Embedding response contained an empty vector")
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts concurrently."""
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))


_embedding_service: EmbeddingService | None = None


def get_embedding_service() -> EmbeddingService:
    """Get the process-wide embedding service instance built from settings."""
    global _embedding_service

    if _embedding_service is None:
        from config.settings import get_settings

        settings = get_settings()
        _embedding_service = EmbeddingService(
            api_key=settings.openrouter_api_key or None,
            base_url=settings.openrouter_base_url,
            model=settings.embedding_model,
            use_simple=settings.use_simple_embeddings,
            dimension=settings.embedding_dimension,
        )

    return _embedding_service

"""
Embedding generation with caching and retry.

This module provides:
- Batch embedding generation against the OpenAI embeddings API
- Exponential backoff on provider errors
- A process-wide embedding cache keyed by (model, normalized text)
"""

import asyncio
import logging

import openai

from storage.cache import TTLCache
from schemas.config import EmbeddingConfig, get_settings

logger = logging.getLogger(__name__)

EmbeddingCache = TTLCache[tuple[str, str], list[float]]


class EmbeddingError(Exception):
    """Embedding generation failed after all retries."""


def normalize_text(text: str) -> str:
    """Collapse whitespace so trivially different texts share a cache entry."""
    return " ".join(text.split())


def create_embedding_cache(config: EmbeddingConfig) -> EmbeddingCache:
    """Build the embedding cache for a given configuration."""
    return TTLCache(
        max_size=config.cache_max_size,
        ttl_seconds=config.cache_ttl_seconds,
        name="embedding cache",
    )


class EmbeddingClient:
    """
    Embedding client with batching, retry logic and memoization.

    Supports:
    - OpenAI embeddings (text-embedding-3-small, etc.)
    - Batch processing for efficiency
    - Exponential backoff on rate limits and transient errors
    - Cache lookups before any provider call
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        api_key: str | None = None,
        cache: EmbeddingCache | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        """
        Initialize the embedding client.

        Args:
            config: Embedding configuration
            api_key: OpenAI API key (uses env var if not provided)
            cache: Shared embedding cache (created from config if omitted)
            client: Pre-built async OpenAI client
        """
        self.config = config or EmbeddingConfig()
        self.api_key = api_key or get_settings().openai_api_key
        self._client = client

        if cache is None and self.config.enable_cache:
            cache = create_embedding_cache(self.config)
        self.cache = cache

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise EmbeddingError("OPENAI_API_KEY environment variable is not set")
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Create embeddings for multiple texts.

        Cached vectors are reused; only misses reach the provider, in
        batches of ``config.batch_size``.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, aligned with ``texts``

        Raises:
            EmbeddingError: If the provider keeps failing or returns a
                vector of the wrong dimensionality
        """
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        missing: dict[str, list[int]] = {}

        for index, text in enumerate(texts):
            key = normalize_text(text)
            cached = self.cache.get((self.model, key)) if self.cache is not None else None
            if cached is not None:
                results[index] = cached
            else:
                missing.setdefault(key, []).append(index)

        if missing:
            pending = list(missing)
            for i in range(0, len(pending), self.config.batch_size):
                batch = pending[i : i + self.config.batch_size]
                embeddings = await self._create_with_retry(batch)

                for key, embedding in zip(batch, embeddings):
                    if self.cache is not None:
                        self.cache.set((self.model, key), embedding)
                    for index in missing[key]:
                        results[index] = embedding

            logger.debug(
                f"Embedded {len(pending)} texts ({len(texts) - sum(map(len, missing.values()))} cached)"
            )

        return [embedding for embedding in results if embedding is not None]

    async def embed_single(self, text: str) -> list[float]:
        """
        Create embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        embeddings = await self.embed([text])
        return embeddings[0]

    async def _create_with_retry(self, texts: list[str]) -> list[list[float]]:
        """Call the provider, retrying with exponential backoff."""
        max_retries = self.config.max_retries
        retry_delay = self.config.retry_delay

        for retry in range(max_retries):
            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=texts,
                )
                embeddings = [item.embedding for item in response.data]
                break

            except openai.RateLimitError as e:
                if retry < max_retries - 1:
                    logger.warning(
                        f"Rate limited (attempt {retry + 1}/{max_retries}), "
                        f"retrying in {retry_delay}s..."
                    )
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    raise EmbeddingError(
                        f"Failed to generate embeddings after {max_retries} retries: {e}"
                    ) from e

            except openai.OpenAIError as e:
                if retry < max_retries - 1:
                    logger.warning(
                        f"Embedding error (attempt {retry + 1}/{max_retries}): {e}"
                    )
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    logger.error(f"Failed to create embeddings after {max_retries} attempts: {e}")
                    raise EmbeddingError(
                        f"Failed to generate embeddings after {max_retries} retries: {e}"
                    ) from e
        else:
            raise EmbeddingError("Embedding provider returned no response")

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, provider returned {len(embeddings)}"
            )
        for embedding in embeddings:
            if len(embedding) != self.config.dimensions:
                raise EmbeddingError(
                    f"Expected {self.config.dimensions}-dimensional embeddings, "
                    f"got {len(embedding)}"
                )

        return embeddings

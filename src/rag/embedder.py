"""Gemini embedding service using the google-genai SDK.

Uses the async API for non-blocking embedding generation. Supports asymmetric
retrieval with different task types for documents vs queries. Vectors are
cached in the key-value cache by a hash of the exact input text, so repeated
chunks and repeated questions cost one external call.
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable

from google import genai
from google.genai import types

from config import load_yaml_config
from config.settings import settings
from src.cache.kv import KeyValueCache
from src.errors import ContractViolation
from src.retry import retry_with_backoff

logger = logging.getLogger(__name__)

CACHE_PREFIX = "embedding:"


def embedding_cache_key(text: str, task_type: str) -> str:
    """Cache key for ``text`` under ``task_type``. Independent of tenant."""
    digest = hashlib.sha256(text.encode()).hexdigest()
    return f"{CACHE_PREFIX}{task_type.lower()}:{digest}"


class GeminiEmbedder:
    """Embed text using Gemini's embedding model via the google-genai SDK."""

    def __init__(
        self,
        cache: KeyValueCache | None = None,
        client: genai.Client | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = load_yaml_config("embeddings.yaml")["embeddings"]
        self.model = model or config["model"]
        self.dimensions = dimensions or config["dimensions"]
        self.batch_size = config.get("batch_size", 100)
        self.max_input_chars = config.get("max_input_chars", 8192)
        self.cache_ttl = config.get("cache_ttl_seconds", 86400)
        self._max_attempts = config.get("max_attempts", 3)
        self._retry_base_delay = config.get("retry_base_delay", 1.0)
        self._task_type_document = config.get("task_type_document", "RETRIEVAL_DOCUMENT")
        self._task_type_query = config.get("task_type_query", "RETRIEVAL_QUERY")
        # Falls back to GEMINI_API_KEY from the environment when unset
        self.client = client or genai.Client(api_key=settings.gemini_api_key or None)
        self._cache = cache
        self._sleep = sleep

    async def embed(self, text: str) -> list[float]:
        """Embed a single document text."""
        return (await self.embed_batch([text]))[0]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query with the RETRIEVAL_QUERY task type."""
        return (await self._embed_many([text], self._task_type_query))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed document chunks for storage, preserving input order.

        Raises:
            ContractViolation: If any text is empty or blank. Nothing is sent.
            ExternalServiceError: If a batch still fails after retries.
                Batches embedded before it are already cached.
        """
        return await self._embed_many(texts, self._task_type_document)

    async def _embed_many(self, texts: list[str], task_type: str) -> list[list[float]]:
        if not texts:
            return []
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ContractViolation(f"Cannot embed empty text (input #{i})")

        results: list[list[float] | None] = [None] * len(texts)
        # Distinct uncached texts -> positions that need them
        pending: dict[str, list[int]] = {}

        for i, text in enumerate(texts):
            if text in pending:
                pending[text].append(i)
                continue
            cached = await self._cache_get(text, task_type)
            if cached is not None:
                results[i] = cached
            else:
                pending[text] = [i]

        hits = len(texts) - sum(len(p) for p in pending.values())
        if hits:
            logger.debug("Embedding cache: %d hits, %d misses", hits, len(pending))

        misses = list(pending)
        for start in range(0, len(misses), self.batch_size):
            batch = misses[start : start + self.batch_size]
            vectors = await self._embed_remote(batch, task_type)
            for text, vector in zip(batch, vectors, strict=True):
                await self._cache_set(text, task_type, vector)
                for i in pending[text]:
                    results[i] = vector

        return [vector for vector in results if vector is not None]

    async def _embed_remote(self, batch: list[str], task_type: str) -> list[list[float]]:
        logger.info("Embedding %d texts (%s)...", len(batch), task_type)
        contents = [text[: self.max_input_chars] for text in batch]

        async def call() -> list[list[float]]:
            result = await self.client.aio.models.embed_content(
                model=self.model,
                contents=contents,
                config=types.EmbedContentConfig(
                    task_type=task_type,
                    output_dimensionality=self.dimensions,
                ),
            )
            vectors = [list(e.values) for e in result.embeddings]
            if len(vectors) != len(batch):
                raise ValueError(
                    f"Embedding service returned {len(vectors)} vectors for {len(batch)} inputs"
                )
            return vectors

        return await retry_with_backoff(
            call,
            attempts=self._max_attempts,
            base_delay=self._retry_base_delay,
            description="Embedding batch",
            sleep=self._sleep,
        )

    async def _cache_get(self, text: str, task_type: str) -> list[float] | None:
        if self._cache is None:
            return None
        return await self._cache.get(embedding_cache_key(text, task_type))

    async def _cache_set(self, text: str, task_type: str, vector: list[float]) -> None:
        if self._cache is not None:
            await self._cache.set(embedding_cache_key(text, task_type), vector, ttl=self.cache_ttl)

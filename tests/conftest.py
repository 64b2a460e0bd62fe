"""Shared test fixtures."""

import json
import os
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Keep litellm from fetching its remote model cost map at import time;
# pytest-httpx would otherwise flag that request as unexpected.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from src.db.models import DomainConfig, SearchResult, SearchSource, Tenant
from src.llm.gateway import CompletionResult


class FakeCache:
    """In-memory stand-in for RedisCache. Values round-trip through JSON like Redis."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any | None:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self.data[key] = json.dumps(value)
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self.data if k.startswith(prefix)]
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def update(
        self, key: str, fn: Callable[[Any | None], Any], ttl: int | None = None
    ) -> Any:
        new_value = fn(await self.get(key))
        await self.set(key, new_value, ttl)
        return new_value


def _make_result(
    url: str = "https://acme.example/pricing",
    score: float = 0.9,
    content: str = "Our Pro plan costs $20 per month and includes priority support.",
    title: str = "Pricing",
    source: SearchSource = SearchSource.VECTOR,
    page_rank: float = 1.0,
) -> SearchResult:
    return SearchResult(
        url=url,
        title=title,
        content=content,
        score=score,
        source=source,
        page_rank=page_rank,
    )


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(
        id="acme",
        display_name="Acme Realty",
        domains=[DomainConfig(url="acme.example")],
        no_data_response="Sorry, Acme has no information on that yet.",
    )


@pytest.fixture
def mock_tenants(tenant: Tenant) -> AsyncMock:
    """Async mock of the tenant registry that knows one tenant."""
    registry = AsyncMock()

    async def get_tenant(tenant_id: str) -> Tenant | None:
        return tenant if tenant_id == tenant.id else None

    registry.get_tenant.side_effect = get_tenant
    return registry


@pytest.fixture
def mock_search() -> AsyncMock:
    """Async mock of SearchEngine returning canned results."""
    search = AsyncMock()
    search.search.return_value = [
        _make_result(score=0.92),
        _make_result(
            url="https://acme.example/support",
            score=0.8,
            content="Contact support by email any day of the week.",
            title="Support",
        ),
    ]
    return search


@pytest.fixture
def mock_llm() -> AsyncMock:
    """Async mock of LLMGateway returning a simple text completion."""
    llm = AsyncMock()
    llm.complete.return_value = CompletionResult(
        content="The Pro plan costs $20 per month.",
        model="gemini/gemini-2.5-flash",
    )
    return llm


@pytest.fixture
def mock_embedder() -> AsyncMock:
    """Async mock of GeminiEmbedder returning fixed 768-dim vectors."""
    embedder = AsyncMock()
    embedder.embed_query.return_value = [0.1] * 768

    async def embed_batch(texts: list[str]) -> list[list[float]]:
        return [[0.1] * 768 for _ in texts]

    embedder.embed_batch.side_effect = embed_batch
    return embedder


@pytest.fixture
def mock_db_pool() -> MagicMock:
    """Mock of asyncpg.Pool with context-managed acquire().

    asyncpg.Pool.acquire() returns an async context manager (not a coroutine),
    so we use MagicMock for the pool and configure __aenter__/__aexit__ manually.
    """
    conn = AsyncMock()
    conn.fetch.return_value = []

    acm = MagicMock()
    acm.__aenter__ = AsyncMock(return_value=conn)
    acm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire.return_value = acm
    pool.fetch = AsyncMock(return_value=[])
    pool.fetchrow = AsyncMock(return_value=None)
    pool.execute = AsyncMock(return_value="UPDATE 1")
    return pool

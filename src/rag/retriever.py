"""Tenant-scoped retrieval: vector search with keyword fallback, plus hybrid fusion.

Every strategy returns at most ``limit`` results and at most one result per
URL (the best-scoring chunk of each page wins).
"""

import asyncio
import functools
import hashlib
import json
import logging

from config.settings import settings
from src.cache.kv import KeyValueCache
from src.db.models import SearchResult, SearchSource
from src.db.store import DocumentStore
from src.errors import ContractViolation
from src.rag.embedder import GeminiEmbedder

logger = logging.getLogger(__name__)

# Over-fetch factor for the vector path, leaving room for URL dedup
_VECTOR_OVERFETCH = 3
_KEYWORD_OVERFETCH = 3
_SEARCH_CACHE_TTL = 3600
# Scores closer than this are ordered by page importance instead
_PAGE_RANK_TIE_BAND = 0.01

DEFAULT_WEIGHTS = (0.7, 0.3)

# Keyword fallback heuristic. Tunable, not calibrated against a benchmark.
KEYWORD_STOP_WORDS = frozenset({
    "the", "about", "tell", "what", "how", "does", "can", "you", "your",
    "this", "that", "with", "from", "have", "for", "and", "are",
})
KEYWORD_MIN_LENGTH = 3
KEYWORD_COVERAGE_WEIGHT = 0.5
KEYWORD_ADJACENCY_BONUS = 0.1
KEYWORD_URL_BONUS = 0.3
KEYWORD_TITLE_BONUS = 0.05
KEYWORD_MAX_SCORE = 1.0
# Scores within this band are ordered by raw match count instead
KEYWORD_TIE_BAND = 0.1

QUERY_EXPANSIONS = {
    "password reset": "password reset recover forgot change",
    "pricing": "pricing cost price fee payment subscription",
    "features": "features capabilities functionality benefits",
    "support": "support help assistance contact customer service",
    "documentation": "documentation docs guide manual tutorial",
}


def expand_query(query: str) -> str:
    """Append a synonym set for the first matching intent, if any."""
    lower = query.lower()
    for key, expansion in QUERY_EXPANSIONS.items():
        if key in lower:
            return f"{query} {expansion}"
    return query


def extract_keywords(query: str) -> list[str]:
    """Lowercased query words minus stop words and words under 3 characters."""
    return [
        word
        for word in query.lower().split(" ")
        if len(word) >= KEYWORD_MIN_LENGTH and word not in KEYWORD_STOP_WORDS
    ]


def score_keyword_match(
    result: SearchResult, keywords: list[str], query: str
) -> tuple[float, int]:
    """Score one candidate against the query keywords.

    Returns:
        (score, match_count), where match_count is the number of keywords
        present in the chunk text and score is capped at 1.0.
    """
    if not keywords:
        return 0.0, 0
    text = result.content.lower()
    url = result.url.lower()
    title = result.title.lower()
    lower_query = query.lower()

    match_count = 0
    bonus = 0.0
    for kw in keywords:
        if kw in text:
            match_count += 1
            if f"{kw} " in lower_query or f" {kw}" in lower_query:
                bonus += KEYWORD_ADJACENCY_BONUS
        if kw in url:
            bonus += KEYWORD_URL_BONUS
        if kw in title:
            bonus += KEYWORD_TITLE_BONUS

    coverage = match_count / len(keywords) * KEYWORD_COVERAGE_WEIGHT
    return min(KEYWORD_MAX_SCORE, coverage + bonus), match_count


def _compare_keyword(a: SearchResult, b: SearchResult) -> float:
    if abs(a.score - b.score) > KEYWORD_TIE_BAND:
        return b.score - a.score
    return b.match_count - a.match_count


def _compare_ranked(a: SearchResult, b: SearchResult) -> float:
    diff = b.score - a.score
    if abs(diff) > _PAGE_RANK_TIE_BAND:
        return diff
    return b.page_rank - a.page_rank


def _with_ranks(results: list[SearchResult]) -> list[SearchResult]:
    return [r.model_copy(update={"rank": i}) for i, r in enumerate(results, start=1)]


def dedupe_by_url(results: list[SearchResult], limit: int) -> list[SearchResult]:
    """Keep the best-scoring result per URL, order by score, cap at ``limit``.

    Scores within 0.01 of each other are ordered by page importance.
    """
    best: dict[str, SearchResult] = {}
    for result in results:
        current = best.get(result.url)
        if current is None or result.score > current.score:
            best[result.url] = result
    ordered = sorted(best.values(), key=functools.cmp_to_key(_compare_ranked))
    return _with_ranks(ordered[:limit])


def combine_results(
    vector_results: list[SearchResult],
    text_results: list[SearchResult],
    weights: tuple[float, float] = DEFAULT_WEIGHTS,
    limit: int | None = None,
) -> list[SearchResult]:
    """Weighted score fusion keyed by URL.

    A URL found by both strategies scores ``v * w_vector + t * w_text``; a URL
    found by one keeps only that strategy's weighted share.
    """
    vector_weight, text_weight = weights
    combined: dict[str, SearchResult] = {}

    for result, weight in [(r, vector_weight) for r in vector_results] + [
        (r, text_weight) for r in text_results
    ]:
        existing = combined.get(result.url)
        if existing is None:
            combined[result.url] = result.model_copy(
                update={"score": result.score * weight, "source": SearchSource.HYBRID}
            )
        else:
            existing.score += result.score * weight

    ordered = sorted(combined.values(), key=lambda r: r.score, reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    return _with_ranks(ordered)


class SearchEngine:
    """Ranked, tenant-scoped search over stored page chunks."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: GeminiEmbedder,
        cache: KeyValueCache | None = None,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._cache = cache
        self.limit = limit or settings.search_limit
        self.min_score = settings.search_min_score if min_score is None else min_score

    async def search(
        self,
        query: str,
        tenant_id: str,
        limit: int | None = None,
        min_score: float | None = None,
        expand: bool = False,
        use_cache: bool = True,
    ) -> list[SearchResult]:
        """Vector search, falling back to keyword search on error or no hits.

        Raises:
            ContractViolation: For an empty query or tenant id.
        """
        _require(query, tenant_id)
        limit = limit or self.limit
        min_score = self.min_score if min_score is None else min_score
        if expand:
            query = expand_query(query)

        cache_key = _search_cache_key(tenant_id, query, limit, min_score)
        if use_cache and self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                logger.debug("Search cache hit for tenant %s", tenant_id)
                return [SearchResult.model_validate(r) for r in cached]

        try:
            results = await self.vector_search(query, tenant_id, limit, min_score)
        except ContractViolation:
            raise
        except Exception as e:
            logger.warning("Vector search failed for tenant %s, using keyword fallback: %s",
                           tenant_id, e)
            return await self.keyword_search(query, tenant_id, limit)

        if not results:
            logger.info("Vector search returned no results, trying keyword fallback")
            return await self.keyword_search(query, tenant_id, limit)

        if use_cache and self._cache is not None:
            await self._cache.set(
                cache_key, [r.model_dump(mode="json") for r in results], ttl=_SEARCH_CACHE_TTL
            )
        return results

    async def vector_search(
        self, query: str, tenant_id: str, limit: int, min_score: float
    ) -> list[SearchResult]:
        """Similarity search only. Errors propagate."""
        embedding = await self._embedder.embed_query(query)
        candidates = await self._store.vector_search(
            tenant_id, embedding, limit * _VECTOR_OVERFETCH, min_score
        )
        logger.info("Vector search returned %d raw results", len(candidates))
        candidates = [c for c in candidates if c.score >= min_score]
        return dedupe_by_url(candidates, limit)

    async def keyword_search(
        self, query: str, tenant_id: str, limit: int | None = None
    ) -> list[SearchResult]:
        """Lexical fallback: candidates containing any keyword, scored heuristically."""
        limit = limit or self.limit
        keywords = extract_keywords(query)
        if not keywords:
            logger.info("No usable keywords in query, keyword search skipped")
            return []

        logger.info("Keyword search for: %s", ", ".join(keywords))
        try:
            candidates = await self._store.keyword_candidates(
                tenant_id, keywords, limit * _KEYWORD_OVERFETCH
            )
        except Exception:
            logger.exception("Keyword search failed for tenant %s", tenant_id)
            return []

        scored = []
        for candidate in candidates:
            score, match_count = score_keyword_match(candidate, keywords, query)
            scored.append(
                candidate.model_copy(
                    update={
                        "score": score,
                        "match_count": match_count,
                        "source": SearchSource.TEXT,
                    }
                )
            )
        scored.sort(key=functools.cmp_to_key(_compare_keyword))

        # One result per URL, keeping the keyword ordering
        seen: set[str] = set()
        top: list[SearchResult] = []
        for result in scored:
            if result.url in seen:
                continue
            seen.add(result.url)
            top.append(result)
            if len(top) == limit:
                break

        logger.info("Keyword search found %d candidates, returning %d", len(candidates), len(top))
        return _with_ranks(top)

    async def text_search(
        self, query: str, tenant_id: str, limit: int | None = None
    ) -> list[SearchResult]:
        """Full-text search, deduplicated by URL. Errors yield no results."""
        _require(query, tenant_id)
        limit = limit or self.limit
        try:
            results = await self._store.text_search(tenant_id, query, limit * _KEYWORD_OVERFETCH)
        except Exception:
            logger.exception("Text search failed for tenant %s", tenant_id)
            return []
        return dedupe_by_url(results, limit)

    async def hybrid_search(
        self,
        query: str,
        tenant_id: str,
        limit: int | None = None,
        min_score: float | None = None,
        weights: tuple[float, float] = DEFAULT_WEIGHTS,
    ) -> list[SearchResult]:
        """Run vector and text search concurrently and fuse their scores."""
        _require(query, tenant_id)
        limit = limit or self.limit
        min_score = self.min_score if min_score is None else min_score

        vector_results, text_results = await asyncio.gather(
            self.vector_search(query, tenant_id, limit, min_score),
            self.text_search(query, tenant_id, limit),
            return_exceptions=True,
        )
        if isinstance(vector_results, BaseException):
            if isinstance(vector_results, ContractViolation):
                raise vector_results
            logger.warning("Vector half of hybrid search failed: %s", vector_results)
            vector_results = []
        if isinstance(text_results, BaseException):
            raise text_results

        return combine_results(vector_results, text_results, weights, limit)


def _require(query: str, tenant_id: str) -> None:
    if not query or not query.strip():
        raise ContractViolation("Search query must not be empty")
    if not tenant_id:
        raise ContractViolation("Search requires a tenant id")


def _search_cache_key(tenant_id: str, query: str, limit: int, min_score: float) -> str:
    payload = json.dumps([query, limit, min_score])
    return f"search:{tenant_id}:{hashlib.sha256(payload.encode()).hexdigest()}"

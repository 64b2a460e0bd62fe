"""PostgreSQL/pgvector document store for pages, chunks and crawl jobs.

Every read and write is scoped by tenant id. Vector similarity uses the
HNSW cosine index on page_chunks; keyword search uses the generated
tsvector column.
"""

import json
import logging
from typing import Any, Protocol
from uuid import UUID

import asyncpg
import numpy as np

from src.db.models import (
    Chunk,
    CrawlError,
    CrawlJob,
    ImageRef,
    Page,
    PageMetadata,
    SearchResult,
    SearchSource,
)

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    async def find_page_by_url(self, tenant_id: str, url: str) -> Page | None: ...

    async def upsert_page(self, page: Page) -> UUID: ...

    async def delete_chunks_for_page(self, tenant_id: str, page_id: UUID) -> int: ...

    async def insert_chunks(self, chunks: list[Chunk]) -> int: ...

    async def replace_page_chunks(self, page: Page, chunks: list[Chunk]) -> UUID: ...

    async def vector_search(
        self, tenant_id: str, embedding: list[float], limit: int, min_score: float
    ) -> list[SearchResult]: ...

    async def text_search(self, tenant_id: str, query: str, limit: int) -> list[SearchResult]: ...

    async def keyword_candidates(
        self, tenant_id: str, keywords: list[str], limit: int
    ) -> list[SearchResult]: ...

    async def create_job(self, job: CrawlJob) -> None: ...

    async def update_job(self, job: CrawlJob) -> None: ...

    async def append_job_error(self, job_id: UUID, error: CrawlError) -> None: ...

    async def get_job(self, job_id: UUID) -> CrawlJob | None: ...


def _jsonb(value: Any) -> str:
    return json.dumps(value, default=str)


def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _vector(embedding: list[float] | None) -> np.ndarray | None:
    if embedding is None:
        return None
    return np.array(embedding, dtype=np.float32)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_page(row: asyncpg.Record) -> Page:
    embedding = row["document_embedding"]
    return Page(
        id=row["id"],
        tenant_id=row["tenant_id"],
        url=row["url"],
        domain=row["domain"] or "",
        path=row["path"] or "/",
        title=row["title"] or "",
        description=row["description"] or "",
        content=row["content"] or "",
        content_type=row["content_type"],
        headings=_loads(row["headings"], []),
        images=[ImageRef(**i) for i in _loads(row["images"], [])],
        links=_loads(row["links"], []),
        metadata=PageMetadata(**_loads(row["metadata"], {})),
        content_hash=row["content_hash"] or "",
        size_bytes=row["size_bytes"] or 0,
        page_rank=float(row["page_rank"]),
        document_embedding=list(embedding) if embedding is not None else None,
        crawled_at=row["crawled_at"],
    )


def _row_to_result(row: asyncpg.Record, score: float, source: SearchSource) -> SearchResult:
    return SearchResult(
        chunk_id=row["id"],
        url=row["url"],
        title=row["title"] or "",
        content=row["content"],
        chunk_index=row["chunk_index"],
        score=score,
        source=source,
        page_rank=float(row["page_rank"]),
    )


def _row_to_job(row: asyncpg.Record) -> CrawlJob:
    return CrawlJob(
        id=row["id"],
        tenant_id=row["tenant_id"],
        domains=list(row["domains"] or []),
        status=row["status"],
        progress=_loads(row["progress"], {}),
        errors=_loads(row["errors"], []),
        stats=_loads(row["stats"], {}),
        error=row["error"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        duration_seconds=row["duration_seconds"],
    )


_CHUNK_COLUMNS = "c.id, c.url, c.title, c.content, c.chunk_index, c.page_rank"


class PgDocumentStore:
    """Document store over the pages, page_chunks and crawl_jobs tables."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # --- Pages and chunks ---

    async def find_page_by_url(self, tenant_id: str, url: str) -> Page | None:
        row = await self._pool.fetchrow(
            "SELECT * FROM pages WHERE tenant_id = $1 AND url = $2",
            tenant_id,
            url,
        )
        return _row_to_page(row) if row else None

    async def upsert_page(self, page: Page) -> UUID:
        async with self._pool.acquire() as conn:
            return await self._upsert_page(conn, page)

    async def delete_chunks_for_page(self, tenant_id: str, page_id: UUID) -> int:
        async with self._pool.acquire() as conn:
            return await self._delete_chunks(conn, tenant_id, page_id)

    async def insert_chunks(self, chunks: list[Chunk]) -> int:
        async with self._pool.acquire() as conn:
            return await self._insert_chunks(conn, chunks)

    async def replace_page_chunks(self, page: Page, chunks: list[Chunk]) -> UUID:
        """Upsert the page and swap its chunks for ``chunks`` in one transaction."""
        async with self._pool.acquire() as conn, conn.transaction():
            page_id = await self._upsert_page(conn, page)
            deleted = await self._delete_chunks(conn, page.tenant_id, page_id)
            inserted = await self._insert_chunks(
                conn, [c.model_copy(update={"page_id": page_id}) for c in chunks]
            )
        logger.debug("Replaced chunks for %s: -%d +%d", page.url, deleted, inserted)
        return page_id

    async def _upsert_page(self, conn: asyncpg.Connection, page: Page) -> UUID:
        row = await conn.fetchrow(
            """
            INSERT INTO pages
                (id, tenant_id, url, domain, path, title, description, content,
                 content_type, headings, images, links, metadata, content_hash,
                 size_bytes, page_rank, document_embedding, crawled_at)
            VALUES (COALESCE($1, gen_random_uuid()), $2, $3, $4, $5, $6, $7, $8,
                    $9, $10::jsonb, $11::jsonb, $12::jsonb, $13::jsonb, $14,
                    $15, $16, $17, $18)
            ON CONFLICT (tenant_id, url) DO UPDATE SET
                domain = EXCLUDED.domain,
                path = EXCLUDED.path,
                title = EXCLUDED.title,
                description = EXCLUDED.description,
                content = EXCLUDED.content,
                content_type = EXCLUDED.content_type,
                headings = EXCLUDED.headings,
                images = EXCLUDED.images,
                links = EXCLUDED.links,
                metadata = EXCLUDED.metadata,
                content_hash = EXCLUDED.content_hash,
                size_bytes = EXCLUDED.size_bytes,
                page_rank = EXCLUDED.page_rank,
                document_embedding = EXCLUDED.document_embedding,
                crawled_at = EXCLUDED.crawled_at,
                updated_at = NOW()
            RETURNING id
            """,
            page.id,
            page.tenant_id,
            page.url,
            page.domain,
            page.path,
            page.title,
            page.description,
            page.content,
            str(page.content_type),
            _jsonb(page.headings),
            _jsonb([i.model_dump() for i in page.images]),
            _jsonb(page.links),
            _jsonb(page.metadata.model_dump()),
            page.content_hash,
            page.size_bytes,
            page.page_rank,
            _vector(page.document_embedding),
            page.crawled_at,
        )
        return row["id"]

    async def _delete_chunks(self, conn: asyncpg.Connection, tenant_id: str, page_id: UUID) -> int:
        result = await conn.execute(
            "DELETE FROM page_chunks WHERE tenant_id = $1 AND page_id = $2",
            tenant_id,
            page_id,
        )
        # asyncpg returns the command tag, e.g. "DELETE 4"
        return int(result.split()[-1]) if result else 0

    async def _insert_chunks(self, conn: asyncpg.Connection, chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        await conn.executemany(
            """
            INSERT INTO page_chunks
                (page_id, tenant_id, url, title, content_type, page_rank,
                 chunk_index, content, chunk_type, token_estimate, embedding)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            """,
            [
                (
                    c.page_id,
                    c.tenant_id,
                    c.url,
                    c.title,
                    str(c.content_type),
                    c.page_rank,
                    c.chunk_index,
                    c.content,
                    str(c.chunk_type),
                    c.token_estimate,
                    _vector(c.embedding),
                )
                for c in chunks
            ],
        )
        return len(chunks)

    # --- Search ---

    async def vector_search(
        self,
        tenant_id: str,
        embedding: list[float],
        limit: int,
        min_score: float,
    ) -> list[SearchResult]:
        """Nearest chunks by cosine similarity (``1 - cosine distance``)."""
        rows = await self._pool.fetch(
            f"""
            SELECT {_CHUNK_COLUMNS}, c.embedding <=> $2 AS distance
            FROM page_chunks c
            WHERE c.tenant_id = $1
              AND c.embedding IS NOT NULL
              AND 1 - (c.embedding <=> $2) >= $4
            ORDER BY c.embedding <=> $2
            LIMIT $3
            """,
            tenant_id,
            _vector(embedding),
            limit,
            min_score,
        )
        return [
            _row_to_result(r, 1.0 - float(r["distance"]), SearchSource.VECTOR) for r in rows
        ]

    async def text_search(self, tenant_id: str, query: str, limit: int) -> list[SearchResult]:
        """Full-text search; scores are ``ts_rank_cd`` scaled into [0, 1)."""
        rows = await self._pool.fetch(
            f"""
            SELECT {_CHUNK_COLUMNS},
                   ts_rank_cd(c.search_vector, plainto_tsquery('english', $2), 32) AS rank
            FROM page_chunks c
            WHERE c.tenant_id = $1
              AND c.search_vector @@ plainto_tsquery('english', $2)
            ORDER BY rank DESC, c.page_rank DESC
            LIMIT $3
            """,
            tenant_id,
            query,
            limit,
        )
        return [_row_to_result(r, float(r["rank"]), SearchSource.TEXT) for r in rows]

    async def keyword_candidates(
        self, tenant_id: str, keywords: list[str], limit: int
    ) -> list[SearchResult]:
        """Chunks containing any keyword (case-insensitive), unscored."""
        if not keywords:
            return []
        patterns = [f"%{_escape_like(k)}%" for k in keywords]
        rows = await self._pool.fetch(
            f"""
            SELECT {_CHUNK_COLUMNS}
            FROM page_chunks c
            WHERE c.tenant_id = $1
              AND c.content ILIKE ANY($2::text[])
            ORDER BY c.page_rank DESC
            LIMIT $3
            """,
            tenant_id,
            patterns,
            limit,
        )
        return [_row_to_result(r, 0.0, SearchSource.TEXT) for r in rows]

    # --- Crawl jobs ---

    async def create_job(self, job: CrawlJob) -> None:
        await self._pool.execute(
            """
            INSERT INTO crawl_jobs
                (id, tenant_id, domains, status, progress, errors, stats, started_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7::jsonb, $8)
            """,
            job.id,
            job.tenant_id,
            job.domains,
            str(job.status),
            _jsonb(job.progress.model_dump()),
            _jsonb([e.model_dump(mode="json") for e in job.errors]),
            _jsonb(job.stats.model_dump()),
            job.started_at,
        )

    async def update_job(self, job: CrawlJob) -> None:
        await self._pool.execute(
            """
            UPDATE crawl_jobs SET
                status = $2,
                progress = $3::jsonb,
                stats = $4::jsonb,
                error = $5,
                completed_at = $6,
                duration_seconds = $7,
                updated_at = NOW()
            WHERE id = $1
            """,
            job.id,
            str(job.status),
            _jsonb(job.progress.model_dump()),
            _jsonb(job.stats.model_dump()),
            job.error,
            job.completed_at,
            job.duration_seconds,
        )

    async def append_job_error(self, job_id: UUID, error: CrawlError) -> None:
        await self._pool.execute(
            """
            UPDATE crawl_jobs
            SET errors = errors || jsonb_build_array($2::jsonb), updated_at = NOW()
            WHERE id = $1
            """,
            job_id,
            _jsonb(error.model_dump(mode="json")),
        )

    async def get_job(self, job_id: UUID) -> CrawlJob | None:
        row = await self._pool.fetchrow("SELECT * FROM crawl_jobs WHERE id = $1", job_id)
        return _row_to_job(row) if row else None

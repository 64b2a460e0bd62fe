"""Ingestion pipeline: crawl → chunk → embed → store, run as a tracked crawl job.

A page whose content hash is unchanged since the last crawl is skipped
before chunking, so it costs no embedding calls and keeps its chunks. A
changed page has its chunks replaced atomically with the output of one
fresh chunking pass.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from src.cache.kv import KeyValueCache
from src.db.models import (
    Chunk,
    ContentType,
    CrawlError,
    CrawlJob,
    CrawlOutcome,
    CrawlStatus,
    Page,
)
from src.db.store import DocumentStore
from src.db.tenants import TenantRegistry
from src.errors import ContractViolation, CrawlSetupError
from src.ingestion.chunker import chunk_page
from src.ingestion.crawler import Crawler
from src.ingestion.log_sink import LoggingSink, LogSink
from src.rag.embedder import GeminiEmbedder
from src.rag.vectors import average_embedding

logger = logging.getLogger(__name__)

# Page importance heuristic
_BASE_RANK = 1.0
_INCOMING_LINK_BOOST = 0.1
_MANY_OUTGOING_LINKS = 50
_MANY_OUTGOING_PENALTY = 0.8
_HOMEPAGE_BOOST = 2.0
_ARTICLE_BOOST = 1.5
_LONG_CONTENT_CHARS = 1000
_LONG_CONTENT_BOOST = 1.2
_MAX_RANK = 10.0


class PageStatus(StrEnum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    EMPTY = "empty"


class PageResult(BaseModel):
    url: str
    status: PageStatus
    chunks: int = 0


def calculate_page_rank(page: Page, all_pages: list[Page]) -> float:
    """Importance score from internal links, page type and length, capped at 10."""
    incoming = sum(1 for other in all_pages if other.url != page.url and page.url in other.links)
    score = _BASE_RANK + incoming * _INCOMING_LINK_BOOST

    if len(page.links) > _MANY_OUTGOING_LINKS:
        score *= _MANY_OUTGOING_PENALTY

    if page.content_type == ContentType.HOMEPAGE:
        score *= _HOMEPAGE_BOOST
    elif page.content_type == ContentType.ARTICLE:
        score *= _ARTICLE_BOOST

    if len(page.content) > _LONG_CONTENT_CHARS:
        score *= _LONG_CONTENT_BOOST

    return min(score, _MAX_RANK)


class IngestionPipeline:
    """Runs crawl jobs for a tenant and keeps its pages and chunks current."""

    def __init__(
        self,
        store: DocumentStore,
        tenants: TenantRegistry,
        embedder: GeminiEmbedder,
        crawler: Crawler | None = None,
        sink: LogSink | None = None,
        cache: KeyValueCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.tenants = tenants
        self.embedder = embedder
        self.crawler = crawler or Crawler()
        self.sink = sink or LoggingSink()
        self._cache = cache
        self._clock = clock

    async def process_page(self, page: Page) -> PageResult:
        """Chunk, embed and store one page unless its content is unchanged.

        Raises:
            ExternalServiceError: If embedding still fails after retries.
        """
        existing = await self.store.find_page_by_url(page.tenant_id, page.url)
        if existing is not None and existing.content_hash == page.content_hash:
            logger.info("Skipped unchanged: %s", page.url)
            return PageResult(url=page.url, status=PageStatus.UNCHANGED)

        page.id = existing.id if existing is not None else uuid4()
        chunk_data = chunk_page(page)
        if not chunk_data:
            logger.warning("No chunks produced for %s", page.url)

        vectors = await self.embedder.embed_batch([c.content for c in chunk_data])
        page.document_embedding = average_embedding(vectors) or None

        chunks = [
            Chunk(
                page_id=page.id,
                tenant_id=page.tenant_id,
                url=page.url,
                title=page.title,
                content_type=page.content_type,
                page_rank=page.page_rank,
                chunk_index=data.chunk_index,
                content=data.content,
                embedding=vector,
                token_estimate=data.token_estimate,
                chunk_type=data.chunk_type,
            )
            for data, vector in zip(chunk_data, vectors, strict=True)
        ]
        await self.store.replace_page_chunks(page, chunks)

        if existing is None:
            logger.info("Added new content: %s (%d chunks)", page.url, len(chunks))
            status = PageStatus.NEW
        else:
            logger.info("Updated content: %s (%d chunks)", page.url, len(chunks))
            status = PageStatus.UPDATED
        if not chunks:
            status = PageStatus.EMPTY
        return PageResult(url=page.url, status=status, chunks=len(chunks))

    async def run_crawl_job(
        self,
        tenant_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> CrawlJob:
        """Crawl every configured domain of a tenant and index the pages found.

        Crawl settings are layered tenant -> domain -> ``overrides``. Per-page
        failures are recorded on the job and do not stop it.

        Raises:
            ContractViolation: If the tenant id is empty or unknown.
            CrawlSetupError: If the tenant has no domains or a site is
                unreachable. The job is stored as failed first.
        """
        if not tenant_id:
            raise ContractViolation("Crawl requires a tenant id")
        tenant = await self.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise ContractViolation(f"Tenant {tenant_id} not found")

        job = CrawlJob(
            tenant_id=tenant_id,
            domains=[d.url for d in tenant.domains],
            status=CrawlStatus.RUNNING,
            started_at=datetime.now(UTC),
        )
        await self.store.create_job(job)
        job_id = str(job.id)

        def job_log(message: str, level: str = "info") -> None:
            self.sink.log(job_id, message, level)

        started = self._clock()
        job_log(f"Starting crawl job {job_id} for {tenant.display_name}")

        try:
            if not tenant.domains:
                raise CrawlSetupError(f"Tenant {tenant_id} has no domains configured")

            pages: list[Page] = []
            for domain in tenant.domains:
                job_log(f"Crawling domain: {domain.url}")
                crawl_settings = tenant.crawl_settings.merged(domain.crawl_settings, overrides)
                if domain.specific_pages:
                    outcome: CrawlOutcome = await self.crawler.crawl_pages(
                        domain.specific_pages, tenant_id, crawl_settings, job_log
                    )
                else:
                    outcome = await self.crawler.crawl_site(
                        domain.url, tenant_id, crawl_settings, job_log
                    )
                pages.extend(outcome.pages)
                for error in outcome.errors:
                    await self._record_error(job, error)
                job_log(f"Domain crawl completed: {len(outcome.pages)} pages found")

            for page in pages:
                page.page_rank = calculate_page_rank(page, pages)

            job_log(f"Processing {len(pages)} pages...")
            results: list[PageResult] = []
            for page in pages:
                try:
                    results.append(await self.process_page(page))
                except Exception as e:
                    logger.exception("Error processing %s", page.url)
                    job_log(f"Error processing {page.url}: {e}", "error")
                    await self._record_error(job, CrawlError(url=page.url, message=str(e)))

            self._finish(job, pages, results, started)
            await self.store.update_job(job)
        except Exception as e:
            job.status = CrawlStatus.FAILED
            job.error = str(e)
            job.completed_at = datetime.now(UTC)
            job.duration_seconds = round(self._clock() - started, 3)
            job_log(f"Error in job {job_id}: {e}", "error")
            await self.store.update_job(job)
            raise

        await self.tenants.report_crawl_stats(
            tenant_id,
            {
                "job_id": job_id,
                "total_pages": job.progress.total_pages,
                "crawled_pages": job.progress.crawled_pages,
                "embeddings_created": job.stats.embeddings_created,
            },
        )
        if self._cache is not None:
            await self._cache.delete_prefix(f"search:{tenant_id}:")
            await self._cache.delete_prefix(f"answer:{tenant_id}:")

        job_log(
            f"Completed job {job_id}. Processed {job.progress.crawled_pages} pages "
            f"in {job.duration_seconds:.1f}s",
            "success",
        )
        return job

    async def _record_error(self, job: CrawlJob, error: CrawlError) -> None:
        job.errors.append(error)
        await self.store.append_job_error(job.id, error)

    def _finish(
        self,
        job: CrawlJob,
        pages: list[Page],
        results: list[PageResult],
        started: float,
    ) -> None:
        stored = [r for r in results if r.status != PageStatus.UNCHANGED]
        duration = self._clock() - started

        job.progress.total_pages = len(pages)
        job.progress.crawled_pages = len(stored)
        job.progress.failed_pages = len(job.errors)
        job.progress.new_pages = sum(1 for r in results if r.status == PageStatus.NEW)
        job.progress.updated_pages = sum(1 for r in results if r.status == PageStatus.UPDATED)
        job.stats.bytes_downloaded = sum(p.size_bytes for p in pages)
        job.stats.embeddings_created = sum(r.chunks for r in stored)
        job.stats.average_page_time = round(duration / len(stored), 3) if stored else 0.0
        job.status = CrawlStatus.COMPLETED
        job.completed_at = datetime.now(UTC)
        job.duration_seconds = round(duration, 3)

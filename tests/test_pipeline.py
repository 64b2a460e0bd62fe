"""Tests for the ingestion pipeline and crawl job lifecycle."""

import math
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from src.db.models import (
    ContentType,
    CrawlError,
    CrawlOutcome,
    CrawlSettings,
    CrawlStatus,
    DomainConfig,
    Page,
    Tenant,
)
from src.errors import ContractViolation, CrawlSetupError
from src.ingestion.pipeline import IngestionPipeline, PageStatus, calculate_page_rank

_BODY = (
    "Acme Realty lists homes for sale across the valley. "
    "Our rental team manages apartments for owners who live abroad. "
    "Call the office any weekday to book a viewing."
)


def _page(
    path: str = "/listings", content_hash: str = "hash-1", content: str = _BODY, **kwargs: object
) -> Page:
    return Page(
        tenant_id="acme",
        url=f"https://acme.example{path}",
        path=path,
        title="Listings",
        content=content,
        content_hash=content_hash,
        size_bytes=1000,
        **kwargs,
    )


@pytest.fixture
def store() -> AsyncMock:
    store = AsyncMock()
    store.find_page_by_url.return_value = None
    store.replace_page_chunks.side_effect = lambda page, chunks: page.id
    return store


@pytest.fixture
def crawler() -> AsyncMock:
    crawler = AsyncMock()
    crawler.crawl_site.return_value = CrawlOutcome(
        domain="acme.example",
        pages=[_page("/"), _page("/listings")],
        errors=[CrawlError(url="https://acme.example/broken", message="HTTP 500")],
    )
    return crawler


@pytest.fixture
def pipeline(
    store: AsyncMock,
    mock_tenants: AsyncMock,
    mock_embedder: AsyncMock,
    crawler: AsyncMock,
    fake_cache,
) -> IngestionPipeline:
    ticks = iter(range(1000))
    return IngestionPipeline(
        store=store,
        tenants=mock_tenants,
        embedder=mock_embedder,
        crawler=crawler,
        sink=MagicMock(),
        cache=fake_cache,
        clock=lambda: float(next(ticks)),
    )


class TestProcessPage:
    @pytest.mark.asyncio
    async def test_unchanged_page_costs_nothing(
        self, pipeline: IngestionPipeline, store: AsyncMock, mock_embedder: AsyncMock
    ) -> None:
        store.find_page_by_url.return_value = _page(id=uuid4())

        result = await pipeline.process_page(_page())

        assert result.status == PageStatus.UNCHANGED
        mock_embedder.embed_batch.assert_not_awaited()
        store.replace_page_chunks.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_page_is_chunked_embedded_and_stored(
        self, pipeline: IngestionPipeline, store: AsyncMock
    ) -> None:
        page = _page()

        result = await pipeline.process_page(page)

        assert result.status == PageStatus.NEW
        assert result.chunks == 1
        stored_page, chunks = store.replace_page_chunks.await_args.args
        assert stored_page.id is not None
        assert [c.chunk_index for c in chunks] == [0]
        assert all(c.page_id == page.id and c.tenant_id == "acme" for c in chunks)
        assert chunks[0].content.startswith("Title: Listings.")
        assert stored_page.document_embedding[0] == pytest.approx(1 / math.sqrt(768))

    @pytest.mark.asyncio
    async def test_changed_page_keeps_its_id(
        self, pipeline: IngestionPipeline, store: AsyncMock
    ) -> None:
        existing_id = uuid4()
        store.find_page_by_url.return_value = _page(content_hash="old", id=existing_id)

        result = await pipeline.process_page(_page(content_hash="new"))

        assert result.status == PageStatus.UPDATED
        assert store.replace_page_chunks.await_args.args[0].id == existing_id


class TestRunCrawlJob:
    @pytest.mark.asyncio
    async def test_completed_job(
        self,
        pipeline: IngestionPipeline,
        store: AsyncMock,
        mock_tenants: AsyncMock,
        crawler: AsyncMock,
        fake_cache,
    ) -> None:
        await fake_cache.set("search:acme:1", [])
        await fake_cache.set("answer:acme:2", {})
        await fake_cache.set("search:other:3", [])

        job = await pipeline.run_crawl_job("acme", {"max_pages": 7})

        assert job.status == CrawlStatus.COMPLETED
        assert job.progress.total_pages == 2
        assert job.progress.crawled_pages == 2
        assert job.progress.new_pages == 2
        assert job.progress.failed_pages == 1
        assert job.stats.embeddings_created == 2
        assert job.stats.bytes_downloaded == 2000
        assert [e.url for e in job.errors] == ["https://acme.example/broken"]

        store.create_job.assert_awaited_once()
        store.append_job_error.assert_awaited_once()
        store.update_job.assert_awaited_once_with(job)
        mock_tenants.report_crawl_stats.assert_awaited_once()

        domain, tenant_id, settings, _ = crawler.crawl_site.await_args.args
        assert (domain, tenant_id) == ("acme.example", "acme")
        assert settings.max_pages == 7

        assert list(fake_cache.data) == ["search:other:3"]

    @pytest.mark.asyncio
    async def test_unchanged_pages_not_counted_as_stored(
        self, pipeline: IngestionPipeline, store: AsyncMock
    ) -> None:
        store.find_page_by_url.return_value = _page(id=uuid4())

        job = await pipeline.run_crawl_job("acme")

        assert job.progress.total_pages == 2
        assert job.progress.crawled_pages == 0
        assert job.stats.embeddings_created == 0

    @pytest.mark.asyncio
    async def test_page_failure_is_recorded_and_job_continues(
        self, pipeline: IngestionPipeline, mock_embedder: AsyncMock
    ) -> None:
        mock_embedder.embed_batch.side_effect = [RuntimeError("quota"), [[0.1] * 768]]

        job = await pipeline.run_crawl_job("acme")

        assert job.status == CrawlStatus.COMPLETED
        assert job.progress.crawled_pages == 1
        assert {e.url for e in job.errors} == {
            "https://acme.example/broken",
            "https://acme.example/",
        }

    @pytest.mark.asyncio
    async def test_unreachable_site_fails_job(
        self, pipeline: IngestionPipeline, store: AsyncMock, crawler: AsyncMock
    ) -> None:
        crawler.crawl_site.side_effect = CrawlSetupError("acme.example is unreachable")

        with pytest.raises(CrawlSetupError):
            await pipeline.run_crawl_job("acme")

        failed = store.update_job.await_args.args[0]
        assert failed.status == CrawlStatus.FAILED
        assert failed.error == "acme.example is unreachable"
        assert failed.completed_at is not None

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, pipeline: IngestionPipeline, store: AsyncMock) -> None:
        with pytest.raises(ContractViolation):
            await pipeline.run_crawl_job("nobody")
        store.create_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tenant_without_domains(
        self, pipeline: IngestionPipeline, store: AsyncMock, mock_tenants: AsyncMock
    ) -> None:
        mock_tenants.get_tenant.side_effect = None
        mock_tenants.get_tenant.return_value = Tenant(id="acme", display_name="Acme")

        with pytest.raises(CrawlSetupError):
            await pipeline.run_crawl_job("acme")
        assert store.update_job.await_args.args[0].status == CrawlStatus.FAILED

    @pytest.mark.asyncio
    async def test_specific_pages_with_layered_settings(
        self, pipeline: IngestionPipeline, mock_tenants: AsyncMock, crawler: AsyncMock
    ) -> None:
        mock_tenants.get_tenant.side_effect = None
        mock_tenants.get_tenant.return_value = Tenant(
            id="acme",
            display_name="Acme",
            crawl_settings=CrawlSettings(max_pages=50, crawl_delay=2.0),
            domains=[
                DomainConfig(
                    url="acme.example",
                    specific_pages=["https://acme.example/pricing"],
                    crawl_settings={"crawl_delay": 0.5},
                )
            ],
        )
        crawler.crawl_pages.return_value = CrawlOutcome(domain="acme.example")

        await pipeline.run_crawl_job("acme")

        crawler.crawl_site.assert_not_awaited()
        urls, _, settings, _ = crawler.crawl_pages.await_args.args
        assert urls == ["https://acme.example/pricing"]
        assert (settings.max_pages, settings.crawl_delay) == (50, 0.5)


class TestPageRank:
    def test_homepage_with_incoming_link(self) -> None:
        home = _page("/", links=["https://acme.example/blog/post"], content_type=ContentType.HOMEPAGE)
        post = _page("/blog/post", links=["https://acme.example/"], content_type=ContentType.ARTICLE)

        assert calculate_page_rank(home, [home, post]) == pytest.approx(2.2)
        assert calculate_page_rank(post, [home, post]) == pytest.approx(1.65)

    def test_capped_at_ten(self) -> None:
        target = _page("/", content_type=ContentType.HOMEPAGE, content="x" * 2000)
        linking = [_page(f"/p{i}", links=[target.url]) for i in range(100)]

        assert calculate_page_rank(target, [target, *linking]) == 10.0

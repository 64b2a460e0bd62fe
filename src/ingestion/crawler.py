"""Breadth-first site crawler with robots rules, path scoping and politeness delay."""

import asyncio
import hashlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from config import load_yaml_config
from src.db.models import CrawlError, CrawlOutcome, CrawlSettings, Page
from src.errors import CrawlSetupError
from src.ingestion.html_parser import parse_page
from src.ingestion.urls import is_path_allowed, normalize_url, seed_url

logger = logging.getLogger(__name__)

JobLog = Callable[[str, str], None]


def _default_headers(user_agent: str) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }


def content_hash(text: str) -> str:
    """SHA-256 hex digest of cleaned page text, used for change detection."""
    return hashlib.sha256(text.encode()).hexdigest()


def _is_html(response: httpx.Response) -> bool:
    ct = response.headers.get("content-type", "")
    return not ct or "html" in ct or "xml" in ct


class Crawler:
    """Async HTTP crawler draining its frontier in bounded-concurrency waves."""

    def __init__(
        self,
        user_agent: str | None = None,
        max_concurrent: int | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = load_yaml_config("crawler.yaml")["crawler"]
        self.user_agent = user_agent or config["user_agent"]
        self.max_concurrent = max_concurrent or config["max_concurrent"]
        self._timeout = timeout or config["timeout"]
        self._robots_timeout = config.get("robots_timeout", 5.0)
        self._sleep = sleep

    def _client(self, user_agent: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=_default_headers(user_agent),
            follow_redirects=True,
            timeout=self._timeout,
        )

    async def load_robots(
        self, client: httpx.AsyncClient, site_url: str
    ) -> RobotFileParser | None:
        """Fetch and parse robots.txt. Any failure means no restrictions."""
        parsed = urlparse(site_url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        try:
            response = await client.get(robots_url, timeout=self._robots_timeout)
        except httpx.HTTPError as e:
            logger.info("Could not fetch robots.txt from %s: %s", robots_url, e)
            return None

        if response.status_code != 200:
            logger.info("No robots.txt at %s (HTTP %d)", robots_url, response.status_code)
            return None

        robots = RobotFileParser()
        robots.set_url(str(response.url))
        robots.parse(response.text.splitlines())
        return robots

    async def fetch_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        tenant_id: str,
        site_url: str,
    ) -> Page | None:
        """Fetch and parse one page.

        Returns:
            The parsed Page, or None when the response is not HTML.

        Raises:
            httpx.HTTPError: On transport failure or a 4xx/5xx response.
        """
        logger.info("Crawling: %s", url)
        response = await client.get(url)
        response.raise_for_status()

        if not _is_html(response):
            logger.info("Skipping non-HTML response at %s", url)
            return None

        page = parse_page(response.text, normalize_url(str(response.url)), tenant_id, site_url)
        page.content_hash = content_hash(page.content)
        page.size_bytes = len(response.content)

        logger.info(
            "Crawled %s: %d bytes, %d links, hash=%s...",
            url, page.size_bytes, len(page.links), page.content_hash[:12],
        )
        return page

    async def crawl_site(
        self,
        domain: str,
        tenant_id: str,
        settings: CrawlSettings | None = None,
        job_log: JobLog | None = None,
    ) -> CrawlOutcome:
        """Walk a site breadth-first from its root.

        Never visits more than ``settings.max_pages`` URLs. Individual page
        failures land in ``CrawlOutcome.errors``.

        Raises:
            CrawlSetupError: If the start URL cannot be reached at all.
        """
        settings = settings or CrawlSettings()
        user_agent = settings.user_agent or self.user_agent
        concurrency = max(1, settings.max_concurrent or self.max_concurrent)
        start = seed_url(domain)

        def log(message: str, level: str = "info") -> None:
            logger.info(message)
            if job_log:
                job_log(message, level)

        outcome = CrawlOutcome(domain=domain)
        visited: set[str] = set()
        crawled: set[str] = set()
        queued: set[str] = {start}
        frontier: deque[str] = deque([start])
        semaphore = asyncio.Semaphore(concurrency)

        log(
            f"Starting crawl of {start}: max_pages={settings.max_pages}, "
            f"respect_robots={settings.respect_robots}, "
            f"excluded={settings.excluded_paths}"
        )

        async with self._client(user_agent) as client:
            robots = await self.load_robots(client, start) if settings.respect_robots else None

            while frontier and len(visited) < settings.max_pages:
                log(f"Queue: {len(frontier)} pending, {len(visited)}/{settings.max_pages} crawled")
                room = settings.max_pages - len(visited)
                batch = [frontier.popleft() for _ in range(min(concurrency, room, len(frontier)))]

                to_fetch: list[str] = []
                for url in batch:
                    if url in visited:
                        continue
                    if robots is not None and not robots.can_fetch(user_agent, url):
                        log(f"Skipped (robots.txt): {url}")
                        continue
                    if not is_path_allowed(url, settings.allowed_paths, settings.excluded_paths):
                        continue
                    visited.add(url)
                    to_fetch.append(url)

                async def visit(url: str) -> Page | None:
                    async with semaphore:
                        try:
                            return await self.fetch_page(client, url, tenant_id, start)
                        except httpx.TransportError as e:
                            if url == start and not outcome.pages:
                                raise CrawlSetupError(f"{start} is unreachable: {e}") from e
                            log(f"Error: {url} - {e}", "error")
                            outcome.errors.append(CrawlError(url=url, message=str(e)))
                        except httpx.HTTPStatusError as e:
                            log(f"Error: {url} - HTTP {e.response.status_code}", "error")
                            outcome.errors.append(
                                CrawlError(url=url, message=f"HTTP {e.response.status_code}")
                            )
                        except httpx.HTTPError as e:
                            log(f"Error: {url} - {type(e).__name__}: {e}", "error")
                            outcome.errors.append(CrawlError(url=url, message=str(e)))
                        except Exception as e:
                            logger.exception("Unexpected error crawling %s", url)
                            if job_log:
                                job_log(f"Error: {url} - {e}", "error")
                            outcome.errors.append(
                                CrawlError(url=url, message=f"{type(e).__name__}: {e}")
                            )
                        finally:
                            await self._sleep(settings.crawl_delay)
                        return None

                pages = await asyncio.gather(*(visit(url) for url in to_fetch))

                for page in pages:
                    if page is None:
                        continue
                    # A redirect can land on a page that was already crawled
                    if page.url in crawled:
                        log(f"Skipped duplicate: {page.url}")
                        continue
                    crawled.add(page.url)
                    visited.add(page.url)
                    outcome.pages.append(page)
                    added = 0
                    for link in page.links:
                        if link not in visited and link not in queued:
                            queued.add(link)
                            frontier.append(link)
                            added += 1
                    log(f"Crawled: {page.url} (found {len(page.links)} links, added {added} new)")

        log(
            f"Crawl completed. Pages: {len(outcome.pages)}, Errors: {len(outcome.errors)}",
            "success",
        )
        return outcome

    async def crawl_pages(
        self,
        urls: list[str],
        tenant_id: str,
        settings: CrawlSettings | None = None,
        job_log: JobLog | None = None,
    ) -> CrawlOutcome:
        """Fetch an explicit list of pages without following links."""
        settings = settings or CrawlSettings()
        user_agent = settings.user_agent or self.user_agent
        outcome = CrawlOutcome(domain=urlparse(urls[0]).netloc if urls else "")

        async with self._client(user_agent) as client:
            for url in urls:
                url = normalize_url(url)
                try:
                    page = await self.fetch_page(client, url, tenant_id, url)
                except httpx.HTTPError as e:
                    message = f"Error crawling specific page {url}: {e}"
                    logger.warning(message)
                    if job_log:
                        job_log(message, "error")
                    outcome.errors.append(CrawlError(url=url, message=str(e)))
                    continue
                except Exception as e:
                    logger.exception("Unexpected error crawling specific page %s", url)
                    if job_log:
                        job_log(f"Error crawling specific page {url}: {e}", "error")
                    outcome.errors.append(
                        CrawlError(url=url, message=f"{type(e).__name__}: {e}")
                    )
                    continue
                finally:
                    await self._sleep(settings.crawl_delay)
                if page is not None:
                    outcome.pages.append(page)

        return outcome

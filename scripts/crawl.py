"""CLI script for running a crawl job for one tenant.

Usage:
    # Crawl every domain configured for the tenant
    python scripts/crawl.py acme

    # Override crawl settings for this run
    python scripts/crawl.py acme --max-pages 20 --delay 0.5

    # Ignore robots.txt (only for sites you operate)
    python scripts/crawl.py acme --ignore-robots

    # Verbose logging
    python scripts/crawl.py acme -v
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import settings
from src.cache.kv import RedisCache
from src.db.session import create_pool
from src.db.store import PgDocumentStore
from src.db.tenants import PgTenantRegistry
from src.errors import RagError
from src.ingestion.crawler import Crawler
from src.ingestion.pipeline import IngestionPipeline
from src.rag.embedder import GeminiEmbedder

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl and index a tenant's websites")
    parser.add_argument("tenant_id", help="Tenant to crawl")
    parser.add_argument("--max-pages", type=int, help="Maximum pages per domain")
    parser.add_argument("--delay", type=float, help="Seconds to wait after each fetch")
    parser.add_argument("--concurrency", type=int, help="Simultaneous fetches")
    parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        metavar="PREFIX",
        help="Path prefix to skip (repeatable)",
    )
    parser.add_argument(
        "--ignore-robots", action="store_true", help="Do not apply robots.txt rules"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser.parse_args()


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Crawl settings given on the command line, applied over tenant settings."""
    overrides: dict[str, Any] = {}
    if args.max_pages is not None:
        overrides["max_pages"] = args.max_pages
    if args.delay is not None:
        overrides["crawl_delay"] = args.delay
    if args.concurrency is not None:
        overrides["max_concurrent"] = args.concurrency
    if args.exclude:
        overrides["excluded_paths"] = args.exclude
    if args.ignore_robots:
        overrides["respect_robots"] = False
    return overrides


async def run(args: argparse.Namespace) -> int:
    pool = await create_pool()
    cache = RedisCache.from_url(settings.redis_url)
    try:
        pipeline = IngestionPipeline(
            store=PgDocumentStore(pool),
            tenants=PgTenantRegistry(pool),
            embedder=GeminiEmbedder(cache=cache),
            crawler=Crawler(),
            cache=cache,
        )
        try:
            job = await pipeline.run_crawl_job(args.tenant_id, build_overrides(args))
        except RagError as e:
            logger.error("Crawl failed: %s", e)
            return 1

        logger.info("=" * 60)
        logger.info(
            "Done: %d pages found, %d stored (%d new, %d updated), %d errors, "
            "%d embeddings in %.1fs",
            job.progress.total_pages,
            job.progress.crawled_pages,
            job.progress.new_pages,
            job.progress.updated_pages,
            job.progress.failed_pages,
            job.stats.embeddings_created,
            job.duration_seconds or 0.0,
        )
        return 0
    finally:
        await cache.close()
        await pool.close()


def main() -> None:
    args = parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

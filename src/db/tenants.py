"""Read-only view of the tenant (broker) registry, plus crawl stat reporting."""

import json
import logging
from typing import Any, Protocol

import asyncpg

from src.db.models import CrawlSettings, DomainConfig, Tenant

logger = logging.getLogger(__name__)


class TenantRegistry(Protocol):
    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    async def report_crawl_stats(self, tenant_id: str, stats: dict[str, Any]) -> None: ...


def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    return json.loads(value) if isinstance(value, str) else value


class PgTenantRegistry:
    """Tenant registry backed by the tenants table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        row = await self._pool.fetchrow(
            """
            SELECT id, display_name, domains, crawl_settings, no_data_response, status
            FROM tenants
            WHERE id = $1
            """,
            tenant_id,
        )
        if row is None:
            return None
        return Tenant(
            id=row["id"],
            display_name=row["display_name"],
            domains=[DomainConfig(**d) for d in _loads(row["domains"], [])],
            crawl_settings=CrawlSettings(**_loads(row["crawl_settings"], {})),
            no_data_response=row["no_data_response"],
            status=row["status"],
        )

    async def report_crawl_stats(self, tenant_id: str, stats: dict[str, Any]) -> None:
        """Record the totals of the latest finished crawl on the tenant row."""
        result = await self._pool.execute(
            """
            UPDATE tenants SET
                last_crawl_at = NOW(),
                last_crawl_stats = $2::jsonb,
                updated_at = NOW()
            WHERE id = $1
            """,
            tenant_id,
            json.dumps(stats, default=str),
        )
        if result != "UPDATE 1":
            logger.warning("Crawl stats for unknown tenant %s were not recorded", tenant_id)

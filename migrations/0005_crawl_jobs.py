"""Create crawl_jobs table tracking crawl progress per tenant."""

from yoyo import step

__depends__ = {"0002_tenants"}

steps = [
    step(
        """
        CREATE TABLE crawl_jobs (
            id                  UUID PRIMARY KEY,
            tenant_id           TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            domains             TEXT[] NOT NULL DEFAULT '{}',
            status              TEXT NOT NULL CHECK (status IN (
                                    'pending', 'running', 'completed', 'failed'
                                )),
            progress            JSONB NOT NULL DEFAULT '{}',
            errors              JSONB NOT NULL DEFAULT '[]',
            stats               JSONB NOT NULL DEFAULT '{}',
            error               TEXT,
            started_at          TIMESTAMPTZ,
            completed_at        TIMESTAMPTZ,
            duration_seconds    DOUBLE PRECISION,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        "DROP TABLE IF EXISTS crawl_jobs",
    ),
    step(
        "CREATE INDEX idx_crawl_jobs_tenant ON crawl_jobs(tenant_id, started_at DESC)",
        "DROP INDEX IF EXISTS idx_crawl_jobs_tenant",
    ),
    step(
        "CREATE INDEX idx_crawl_jobs_running ON crawl_jobs(status) WHERE status = 'running'",
        "DROP INDEX IF EXISTS idx_crawl_jobs_running",
    ),
]

"""Create pages table: one row per crawled (tenant, url)."""

from yoyo import step

__depends__ = {"0002_tenants"}

steps = [
    step(
        """
        CREATE TABLE pages (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id           TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            url                 TEXT NOT NULL,
            domain              TEXT,
            path                TEXT,
            title               TEXT,
            description         TEXT,
            content             TEXT,
            content_type        TEXT NOT NULL DEFAULT 'page' CHECK (content_type IN (
                                    'homepage', 'article', 'product', 'support',
                                    'about', 'contact', 'page'
                                )),
            headings            JSONB DEFAULT '[]',
            images              JSONB DEFAULT '[]',
            links               JSONB DEFAULT '[]',
            metadata            JSONB DEFAULT '{}',
            content_hash        TEXT NOT NULL,
            size_bytes          INTEGER DEFAULT 0,
            page_rank           DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            document_embedding  vector(768),
            crawled_at          TIMESTAMPTZ,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW(),

            UNIQUE(tenant_id, url)
        )
        """,
        "DROP TABLE IF EXISTS pages",
    ),
    step(
        "CREATE INDEX idx_pages_tenant ON pages(tenant_id)",
        "DROP INDEX IF EXISTS idx_pages_tenant",
    ),
]

"""Create tenants table (read by the core, written by the account service)."""

from yoyo import step

__depends__ = {"0001_extensions"}

steps = [
    step(
        """
        CREATE TABLE tenants (
            id                  TEXT PRIMARY KEY,
            display_name        TEXT NOT NULL,
            domains             JSONB NOT NULL DEFAULT '[]',
            crawl_settings      JSONB NOT NULL DEFAULT '{}',
            no_data_response    TEXT,
            status              TEXT NOT NULL DEFAULT 'active'
                                CHECK (status IN ('active', 'inactive', 'suspended')),
            last_crawl_at       TIMESTAMPTZ,
            last_crawl_stats    JSONB,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        "DROP TABLE IF EXISTS tenants",
    ),
]

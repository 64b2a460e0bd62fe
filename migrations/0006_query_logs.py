"""Create query_logs table for answer analytics."""

from yoyo import step

__depends__ = {"0002_tenants"}

steps = [
    step(
        """
        CREATE TABLE query_logs (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id       TEXT NOT NULL,
            session_id      TEXT,
            question        TEXT NOT NULL,
            answer          TEXT NOT NULL,
            result_count    INTEGER NOT NULL DEFAULT 0,
            confidence      TEXT CHECK (confidence IN ('low', 'medium', 'high')),
            top_score       DOUBLE PRECISION,
            latency_ms      INTEGER,
            streamed        BOOLEAN NOT NULL DEFAULT FALSE,
            error_message   TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        "DROP TABLE IF EXISTS query_logs",
    ),
    step(
        "CREATE INDEX idx_query_logs_tenant ON query_logs(tenant_id, created_at DESC)",
        "DROP INDEX IF EXISTS idx_query_logs_tenant",
    ),
]

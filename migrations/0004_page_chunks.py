"""Create page_chunks table with vector, full-text and trigram indexes."""

from yoyo import step

__depends__ = {"0003_pages"}

steps = [
    step(
        """
        CREATE TABLE page_chunks (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            page_id         UUID NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
            tenant_id       TEXT NOT NULL,

            -- Page fields denormalised for retrieval speed
            url             TEXT NOT NULL,
            title           TEXT,
            content_type    TEXT,
            page_rank       DOUBLE PRECISION NOT NULL DEFAULT 1.0,

            chunk_index     INTEGER NOT NULL,
            content         TEXT NOT NULL,
            chunk_type      TEXT NOT NULL DEFAULT 'content',
            token_estimate  INTEGER,

            embedding       vector(768),
            search_vector   tsvector GENERATED ALWAYS AS (
                                to_tsvector('english', coalesce(title, '') || ' ' || content)
                            ) STORED,

            created_at      TIMESTAMPTZ DEFAULT NOW(),

            UNIQUE(page_id, chunk_index)
        )
        """,
        "DROP TABLE IF EXISTS page_chunks",
    ),
    step(
        """
        CREATE INDEX idx_page_chunks_embedding ON page_chunks
            USING hnsw (embedding vector_cosine_ops) WITH (m = 16, ef_construction = 64)
        """,
        "DROP INDEX IF EXISTS idx_page_chunks_embedding",
    ),
    step(
        """
        CREATE INDEX idx_page_chunks_search ON page_chunks
            USING gin (search_vector)
        """,
        "DROP INDEX IF EXISTS idx_page_chunks_search",
    ),
    step(
        """
        CREATE INDEX idx_page_chunks_trgm ON page_chunks
            USING gin (content gin_trgm_ops)
        """,
        "DROP INDEX IF EXISTS idx_page_chunks_trgm",
    ),
    step(
        "CREATE INDEX idx_page_chunks_tenant ON page_chunks(tenant_id, page_rank DESC)",
        "DROP INDEX IF EXISTS idx_page_chunks_tenant",
    ),
    step(
        "CREATE INDEX idx_page_chunks_page ON page_chunks(page_id)",
        "DROP INDEX IF EXISTS idx_page_chunks_page",
    ),
]

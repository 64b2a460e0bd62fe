"""Async query logging to the query_logs table."""

import logging
from uuid import UUID

import asyncpg

logger = logging.getLogger(__name__)


async def log_query(
    pool: asyncpg.Pool,
    tenant_id: str,
    question: str,
    answer: str,
    latency_ms: int,
    result_count: int = 0,
    confidence: str | None = None,
    top_score: float | None = None,
    session_id: str | None = None,
    streamed: bool = False,
    error_message: str | None = None,
) -> UUID | None:
    """Insert a row into query_logs and return its ID.

    Fire-and-forget friendly: errors are logged, not raised.
    Returns the row UUID on success, None on failure.
    """
    try:
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO query_logs
                    (tenant_id, session_id, question, answer, result_count,
                     confidence, top_score, latency_ms, streamed, error_message)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING id
                """,
                tenant_id,
                session_id,
                question,
                answer,
                result_count,
                confidence,
                top_score,
                latency_ms,
                streamed,
                error_message,
            )
            return UUID(str(row["id"])) if row else None
    except Exception:
        logger.exception("Failed to log query")
        return None

"""Query orchestrator: retrieve context, call LLM, return grounded answer."""

import hashlib
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import asyncpg

from config.settings import settings
from src.cache.kv import KeyValueCache
from src.conversation.sessions import (
    SessionManager,
    create_short_summary,
    last_assistant_turn,
    wants_summary,
)
from src.db.models import (
    AnswerResponse,
    Citation,
    CitedAnswer,
    Confidence,
    Role,
    SearchResult,
    Tenant,
)
from src.db.query_log import log_query
from src.db.tenants import TenantRegistry
from src.errors import ContractViolation
from src.llm.gateway import LLMGateway
from src.llm.postprocess import (
    build_sources,
    calculate_confidence,
    estimate_tokens,
    is_no_answer,
)
from src.llm.prompts import build_citation_messages, build_context, build_rag_messages
from src.rag.retriever import SearchEngine

logger = logging.getLogger(__name__)

DEFAULT_NO_DATA_RESPONSE = (
    "I couldn't find relevant information to answer your question. "
    "Please try rephrasing or ask about something else."
)
_ANSWER_CACHE_TTL = 3600


class Orchestrator:
    """Coordinates retrieval and LLM calls to answer a tenant's visitor questions."""

    def __init__(
        self,
        search: SearchEngine,
        llm: LLMGateway,
        tenants: TenantRegistry,
        sessions: SessionManager | None = None,
        pool: asyncpg.Pool | None = None,
        cache: KeyValueCache | None = None,
        max_context_chars: int | None = None,
    ) -> None:
        self._search = search
        self._llm = llm
        self._tenants = tenants
        self._sessions = sessions
        self._pool = pool
        self._cache = cache
        self.max_context_chars = max_context_chars or settings.max_context_chars

    async def _get_tenant(self, tenant_id: str) -> Tenant:
        if not tenant_id:
            raise ContractViolation("A tenant id is required")
        tenant = await self._tenants.get_tenant(tenant_id)
        if tenant is None:
            raise ContractViolation(f"Tenant {tenant_id} not found")
        return tenant

    async def _retrieve(
        self, query: str, tenant_id: str, top_k: int | None, min_score: float | None
    ) -> list[SearchResult]:
        results = await self._search.search(query, tenant_id, limit=top_k, min_score=min_score)
        logger.info("Retrieved %d results for tenant %s", len(results), tenant_id)
        return results

    async def answer(
        self,
        query: str,
        tenant_id: str,
        top_k: int | None = None,
        min_score: float | None = None,
        use_cache: bool = True,
    ) -> AnswerResponse:
        """Answer a question from the tenant's indexed content.

        With nothing retrieved the tenant's no-data message is returned and
        the LLM is not called.

        Raises:
            ContractViolation: Empty query, missing or unknown tenant.
            ExternalServiceError: The completion failed after retries.
        """
        _require_query(query)
        start = time.monotonic()
        tenant = await self._get_tenant(tenant_id)
        logger.info("Processing question for %s: %s", tenant_id, query[:80])

        cache_key = _answer_cache_key(tenant_id, query, top_k, min_score)
        if use_cache and self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                logger.debug("Answer cache hit for tenant %s", tenant_id)
                return AnswerResponse.model_validate(cached)

        results = await self._retrieve(query, tenant_id, top_k, min_score)

        if not results:
            response = AnswerResponse(
                answer=tenant.no_data_response or DEFAULT_NO_DATA_RESPONSE,
                confidence=Confidence.LOW,
                response_time_ms=_elapsed_ms(start),
            )
            await self._log(tenant_id, query, response.answer, start, results, response.confidence)
            return response

        context = build_context(results, self.max_context_chars)
        messages = build_rag_messages(query, context, tenant.display_name)
        completion = await self._llm.complete(messages)
        answer = completion.content or ""

        if is_no_answer(answer) and tenant.no_data_response:
            logger.info("Model could not answer, using the tenant's no-data response")
            answer = tenant.no_data_response

        response = AnswerResponse(
            answer=answer,
            sources=build_sources(results, query),
            confidence=calculate_confidence(results),
            response_time_ms=_elapsed_ms(start),
            tokens_used=estimate_tokens(context + answer),
        )

        if use_cache and self._cache is not None:
            await self._cache.set(
                cache_key, response.model_dump(mode="json"), ttl=_ANSWER_CACHE_TTL
            )
        await self._log(tenant_id, query, answer, start, results, response.confidence)
        return response

    async def stream_answer(
        self,
        query: str,
        tenant_id: str,
        top_k: int | None = None,
        min_score: float | None = None,
        history: str = "",
        session_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream an answer as events.

        Yields dicts with event type and payload:
          {"type": "sources", "sources": [...], "confidence": "..."}
          {"type": "token", "content": "..."}
          {"type": "done", "answer": "...", "sources": [...], "confidence": "..."}
          {"type": "error", "message": "..."}

        Exactly one terminal ``done`` or ``error`` event ends the stream.
        Closing the iterator early closes the LLM stream. ``history`` is a
        rendered conversation block placed before the retrieved context.
        """
        _require_query(query)
        start = time.monotonic()
        tenant = await self._get_tenant(tenant_id)
        logger.info("Streaming question for %s: %s", tenant_id, query[:80])

        try:
            results = await self._retrieve(query, tenant_id, top_k, min_score)
        except ContractViolation:
            raise
        except Exception as e:
            logger.exception("Retrieval failed while streaming")
            yield {"type": "error", "message": str(e)}
            return

        sources = [s.model_dump() for s in build_sources(results, query)]
        confidence = str(calculate_confidence(results))
        yield {"type": "sources", "sources": sources, "confidence": confidence}

        if not results:
            answer = tenant.no_data_response or DEFAULT_NO_DATA_RESPONSE
            yield {"type": "token", "content": answer}
        else:
            context = build_context(results, self.max_context_chars)
            messages = build_rag_messages(query, context, tenant.display_name, history)
            answer = ""
            try:
                async with aclosing(self._llm.stream(messages)) as deltas:
                    async for delta in deltas:
                        answer += delta
                        yield {"type": "token", "content": delta}
            except Exception as e:
                logger.exception("LLM stream failed")
                await self._log(
                    tenant_id, query, answer, start, results, confidence,
                    session_id=session_id, streamed=True, error=str(e),
                )
                yield {"type": "error", "message": str(e)}
                return

        await self._log(
            tenant_id, query, answer, start, results, confidence,
            session_id=session_id, streamed=True,
        )
        yield {"type": "done", "answer": answer, "sources": sources, "confidence": confidence}

    async def answer_with_citations(
        self,
        query: str,
        tenant_id: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> CitedAnswer:
        """Answer with ``[n]`` markers that index into the returned citations."""
        _require_query(query)
        tenant = await self._get_tenant(tenant_id)
        results = await self._retrieve(query, tenant_id, top_k, min_score)
        if not results:
            return CitedAnswer(answer=tenant.no_data_response or DEFAULT_NO_DATA_RESPONSE)

        messages = build_citation_messages(query, results, tenant.display_name)
        completion = await self._llm.complete(messages)
        return CitedAnswer(
            answer=completion.content or "",
            citations=[
                Citation(number=i, url=r.url, title=r.title)
                for i, r in enumerate(results, start=1)
            ],
        )

    async def chat_stream(
        self,
        query: str,
        tenant_id: str,
        session_id: str,
        old_session_id: str | None = None,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """One conversational turn, streamed.

        Records the user turn, answers either with a short summary of the
        previous answer (no retrieval) or a streamed RAG answer, records the
        assistant turn, and ends with a ``done`` event carrying the session
        id, whether earlier turns were relevant, the sources and confidence.
        """
        if self._sessions is None:
            raise ContractViolation("Chat requires a session manager")
        _require_query(query)
        if not tenant_id or not session_id:
            raise ContractViolation("Chat requires a tenant id and a session id")

        if old_session_id and old_session_id != session_id:
            await self._sessions.clear_session(tenant_id, old_session_id)

        history = await self._sessions.get_history(tenant_id, session_id)
        relevance = self._sessions.check_relevance(query, history)
        await self._sessions.append_turn(tenant_id, session_id, Role.USER, query)

        previous = last_assistant_turn(history)
        sources: list[dict[str, Any]] = []
        confidence = str(Confidence.MEDIUM)
        answer = ""

        if relevance.requires_context and previous is not None and wants_summary(query):
            logger.info("Answering %s from the previous turn without retrieval", session_id)
            answer = create_short_summary(previous.content)
            confidence = str(Confidence.HIGH)
            yield {"type": "sources", "sources": [], "confidence": confidence}
            words = answer.split(" ")
            for i, word in enumerate(words):
                yield {"type": "token", "content": word if i == len(words) - 1 else word + " "}
        else:
            async with aclosing(
                self.stream_answer(
                    query, tenant_id, top_k, min_score,
                    history=relevance.context_text, session_id=session_id,
                )
            ) as events:
                async for event in events:
                    if event["type"] == "done":
                        answer = event["answer"]
                        sources = event["sources"]
                        confidence = event["confidence"]
                    elif event["type"] == "error":
                        yield event
                        return
                    else:
                        yield event

        await self._sessions.append_turn(tenant_id, session_id, Role.ASSISTANT, answer)
        yield {
            "type": "done",
            "session_id": session_id,
            "context_used": relevance.is_related,
            "sources": sources,
            "confidence": confidence,
        }

    async def _log(
        self,
        tenant_id: str,
        query: str,
        answer: str,
        start: float,
        results: list[SearchResult],
        confidence: str,
        session_id: str | None = None,
        streamed: bool = False,
        error: str | None = None,
    ) -> None:
        if self._pool is None:
            return
        await log_query(
            self._pool,
            tenant_id,
            query,
            answer,
            _elapsed_ms(start),
            result_count=len(results),
            confidence=str(confidence),
            top_score=results[0].score if results else None,
            session_id=session_id,
            streamed=streamed,
            error_message=error,
        )


def _require_query(query: str) -> None:
    if not query or not query.strip():
        raise ContractViolation("Query must not be empty")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _answer_cache_key(
    tenant_id: str, query: str, top_k: int | None, min_score: float | None
) -> str:
    payload = json.dumps([query, top_k, min_score])
    return f"answer:{tenant_id}:{hashlib.sha256(payload.encode()).hexdigest()}"

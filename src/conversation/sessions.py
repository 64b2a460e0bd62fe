"""Conversation sessions: turn history in the key-value cache and follow-up detection.

A session lives under ``chat_session:<tenant>:<id>`` with a sliding TTL. It is created
by the first appended turn, refreshed by every append and gone once the TTL
lapses or it is cleared.
"""

import logging
import re
from datetime import UTC, datetime
from typing import Any

from config.settings import settings
from src.cache.kv import KeyValueCache
from src.db.models import ConversationSession, ConversationTurn, RelevanceCheck, Role
from src.errors import ContractViolation

logger = logging.getLogger(__name__)

SESSION_PREFIX = "chat_session:"

# Words that point back at earlier turns or ask to restate them
CONTEXT_KEYWORDS = (
    "it", "this", "that", "these", "those",
    "above", "previous", "earlier", "before",
    "mentioned", "said", "told", "explained",
    "more", "details", "elaborate", "clarify",
    "short", "inshort", "brief", "summary", "summarize", "summarise",
    "again", "repeat", "also", "furthermore",
)
SUMMARY_KEYWORDS = ("short", "brief", "summary", "summarize", "summarise")

# Two user/assistant exchanges
RECENT_TURNS = 4

_CONTEXT_RE = re.compile(r"\b(?:" + "|".join(CONTEXT_KEYWORDS) + r")\b")
_SUMMARY_SENTENCE_MIN_CHARS = 20
_SUMMARY_MAX_SENTENCES = 3
_SUMMARY_MAX_CHARS = 300
_SUMMARY_FALLBACK_CHARS = 200


def session_key(tenant_id: str, session_id: str) -> str:
    return f"{SESSION_PREFIX}{tenant_id}:{session_id}"


def render_history(turns: list[ConversationTurn]) -> str:
    """Render turns as a delimited block to prepend to a prompt."""
    if not turns:
        return ""
    lines = ["Previous conversation in this session:\n", "=" * 50 + "\n"]
    for i, turn in enumerate(turns):
        speaker = "User" if turn.role == Role.USER else "Assistant"
        lines.append(f"\n{speaker}: {turn.content}\n")
        if i < len(turns) - 1:
            lines.append("-" * 30 + "\n")
    lines.append("=" * 50 + "\n\n")
    return "".join(lines)


def wants_summary(query: str) -> bool:
    """True when the query asks for a short/brief/summary restatement."""
    lower = query.lower()
    return any(word in lower for word in SUMMARY_KEYWORDS)


def last_assistant_turn(turns: list[ConversationTurn]) -> ConversationTurn | None:
    for turn in reversed(turns):
        if turn.role == Role.ASSISTANT:
            return turn
    return None


def create_short_summary(text: str) -> str:
    """Extractive summary: the first few substantial sentences, capped at 300 chars."""
    sentences = [s for s in text.split(". ") if len(s) > _SUMMARY_SENTENCE_MIN_CHARS]
    if sentences:
        summary = ". ".join(sentences[:_SUMMARY_MAX_SENTENCES])
        if len(summary) > _SUMMARY_MAX_CHARS:
            return summary[:_SUMMARY_MAX_CHARS] + "..."
        return summary
    return "Here's a brief summary: " + text[:_SUMMARY_FALLBACK_CHARS] + "..."


class SessionManager:
    """Per-session turn history stored in the key-value cache, scoped by tenant."""

    def __init__(self, cache: KeyValueCache, ttl_seconds: int | None = None) -> None:
        self._cache = cache
        self.ttl = ttl_seconds or settings.session_ttl_seconds

    async def get_session(self, tenant_id: str, session_id: str) -> ConversationSession | None:
        _require_ids(tenant_id, session_id)
        raw = await self._cache.get(session_key(tenant_id, session_id))
        if raw is None:
            return None
        return ConversationSession.model_validate(raw)

    async def get_history(self, tenant_id: str, session_id: str) -> list[ConversationTurn]:
        session = await self.get_session(tenant_id, session_id)
        return session.turns if session else []

    async def append_turn(
        self, tenant_id: str, session_id: str, role: Role, content: str
    ) -> ConversationSession:
        """Append one turn and refresh the TTL.

        The read-modify-write goes through the cache's atomic update, so
        concurrent appends to one session never drop a turn.
        """
        _require_ids(tenant_id, session_id)
        turn = ConversationTurn(role=role, content=content)

        def add(current: dict[str, Any] | None) -> dict[str, Any]:
            session = (
                ConversationSession.model_validate(current)
                if current
                else ConversationSession(id=session_id)
            )
            session.turns.append(turn)
            session.last_activity = datetime.now(UTC)
            return session.model_dump(mode="json")

        raw = await self._cache.update(session_key(tenant_id, session_id), add, ttl=self.ttl)
        return ConversationSession.model_validate(raw)

    async def new_session(
        self, tenant_id: str, new_session_id: str, old_session_id: str | None = None
    ) -> ConversationSession:
        """Start an empty session, clearing ``old_session_id`` first when given."""
        _require_ids(tenant_id, new_session_id)
        if old_session_id and old_session_id != new_session_id:
            await self.clear_session(tenant_id, old_session_id)
        session = ConversationSession(id=new_session_id)
        await self._cache.set(
            session_key(tenant_id, new_session_id), session.model_dump(mode="json"), ttl=self.ttl
        )
        return session

    async def clear_session(self, tenant_id: str, session_id: str) -> None:
        _require_ids(tenant_id, session_id)
        await self._cache.delete(session_key(tenant_id, session_id))
        logger.info("Cleared session %s for tenant %s", session_id, tenant_id)

    def check_relevance(self, query: str, history: list[ConversationTurn]) -> RelevanceCheck:
        """Decide whether ``query`` leans on earlier turns.

        A back-reference or restatement keyword attaches the whole history;
        otherwise the last two exchanges are attached for continuity only.
        """
        if not history:
            return RelevanceCheck()

        if _CONTEXT_RE.search(query.lower()):
            return RelevanceCheck(
                is_related=True,
                requires_context=True,
                context_text=render_history(history),
            )

        return RelevanceCheck(
            is_related=False,
            requires_context=False,
            context_text=render_history(history[-RECENT_TURNS:]),
        )


def _require_ids(tenant_id: str, session_id: str) -> None:
    if not tenant_id:
        raise ContractViolation("Tenant id must not be empty")
    if not session_id:
        raise ContractViolation("Session id must not be empty")

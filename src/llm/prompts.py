"""System prompts and message builders for tenant-grounded support answers."""

from typing import Any

from src.db.models import SearchResult

DEFAULT_CLIENT_NAME = "our company"

_BASE_RULES = """\
Answer questions directly and naturally as if you're having a conversation.
Use the information from the context to provide accurate, helpful answers.
Do NOT mention "the context" or "according to the context" in your responses.
Do NOT say things like "the provided context includes" or "based on the context".
Simply answer the question directly using the information available."""

_CITATION_RULES = """\
When answering, cite sources using [1], [2], etc. format.
Always cite the source when using information from it."""

_CLOSING_RULES = """\
If you cannot answer based on the available information, politely say you \
don't have that specific information.
Be professional, friendly, and conversational in tone."""


def build_system_prompt(display_name: str | None = None, citations: bool = False) -> str:
    """Support-assistant instructions personalised with the tenant's name."""
    name = display_name or DEFAULT_CLIENT_NAME
    parts = [
        f"You are an expert customer support assistant for {name} and its services.",
        _BASE_RULES,
    ]
    if citations:
        parts.append(_CITATION_RULES)
    parts.append(_CLOSING_RULES)
    return "\n".join(parts)


def _format_entry(result: SearchResult) -> str:
    return f"Source: {result.title or 'Untitled'} ({result.url})\n{result.content}\n\n"


def build_context(results: list[SearchResult], max_chars: int) -> str:
    """Concatenate results (one per URL) until ``max_chars`` would be exceeded.

    The first entry is truncated rather than dropped when it alone is over
    budget, so a non-empty result list never yields an empty context.
    """
    context = ""
    seen: set[str] = set()
    for result in results:
        if result.url in seen:
            continue
        entry = _format_entry(result)
        if len(context) + len(entry) > max_chars:
            if not context:
                context = entry[:max_chars]
            break
        context += entry
        seen.add(result.url)
    return context.strip()


def build_user_message(query: str, context: str, history: str = "") -> str:
    """User turn carrying retrieved context, optional prior conversation, and the question."""
    message = f"Here's some information that might help:\n\n{context}\n\nUser Question: {query}"
    if history:
        message = f"{history}{message}"
    return message


def build_rag_messages(
    query: str,
    context: str,
    display_name: str | None = None,
    history: str = "",
) -> list[dict[str, Any]]:
    """Assemble the system + user messages for a grounded answer."""
    return [
        {"role": "system", "content": build_system_prompt(display_name)},
        {"role": "user", "content": build_user_message(query, context, history)},
    ]


def build_citation_context(results: list[SearchResult]) -> str:
    """Numbered context: ``[n] title`` followed by the chunk text."""
    return "".join(
        f"[{i}] {r.title}\n{r.content}\n\n" for i, r in enumerate(results, start=1)
    )


def build_citation_messages(
    query: str,
    results: list[SearchResult],
    display_name: str | None = None,
) -> list[dict[str, Any]]:
    """Messages asking for an answer with ``[n]`` citations into ``results``."""
    return [
        {"role": "system", "content": build_system_prompt(display_name, citations=True)},
        {
            "role": "user",
            "content": build_user_message(query, build_citation_context(results)),
        },
    ]

"""Post-processing for generated answers and their cited sources."""

import math

from src.db.models import Confidence, SearchResult, SourceReference

MAX_SOURCES = 3
SNIPPET_LENGTH = 200
# A ". " this close to the window start moves the snippet to the next sentence
_SENTENCE_START_WINDOW = 50

# Phrases that mean the model could not answer from what it was given
NO_ANSWER_PHRASES = (
    "does not contain any information",
    "cannot provide an answer",
    "cannot answer",
    "don't have information",
    "no information",
    "not found in the context",
    "context does not contain",
    "provided context does not",
)

HIGH_TOP_SCORE = 0.85
HIGH_MEAN_SCORE = 0.75
MEDIUM_TOP_SCORE = 0.75
MEDIUM_MEAN_SCORE = 0.65


def is_no_answer(answer: str) -> bool:
    """True when the answer contains a known cannot-answer phrase."""
    lower = answer.lower()
    return any(phrase in lower for phrase in NO_ANSWER_PHRASES)


def calculate_confidence(results: list[SearchResult]) -> Confidence:
    """Coarse label from the top and mean retrieval scores.

    A heuristic, not a probability.
    """
    if not results:
        return Confidence.LOW
    top = results[0].score
    mean = sum(r.score for r in results) / len(results)
    if top > HIGH_TOP_SCORE and mean > HIGH_MEAN_SCORE:
        return Confidence.HIGH
    if top > MEDIUM_TOP_SCORE and mean > MEDIUM_MEAN_SCORE:
        return Confidence.MEDIUM
    return Confidence.LOW


def extract_snippet(text: str, query: str, max_length: int = SNIPPET_LENGTH) -> str:
    """Pick the ``max_length`` window of ``text`` containing the most query words.

    The earliest best window wins. Ellipses mark truncation on either side.
    """
    if not text:
        return ""

    query_words = query.lower().split()
    lower = text.lower()
    best_start = 0
    best_score = 0
    for i in range(len(text) - max_length + 1):
        window = lower[i : i + max_length]
        score = sum(1 for word in query_words if word in window)
        if score > best_score:
            best_score = score
            best_start = i

    snippet = text[best_start : best_start + max_length]
    sentence_start = snippet.find(". ")
    if 0 < sentence_start < _SENTENCE_START_WINDOW:
        snippet = snippet[sentence_start + 2 :]

    if best_start > 0:
        snippet = "..." + snippet
    if best_start + max_length < len(text):
        snippet += "..."
    return snippet.strip()


def build_sources(results: list[SearchResult], query: str) -> list[SourceReference]:
    """The top results as cited sources with query-centred snippets."""
    return [
        SourceReference(
            url=r.url,
            title=r.title,
            score=r.score,
            snippet=extract_snippet(r.content, query),
        )
        for r in results[:MAX_SOURCES]
    ]


def estimate_tokens(text: str) -> int:
    """Rough token count for usage reporting: one token per four characters."""
    return math.ceil(len(text) / 4)

"""Sentence-based chunker for crawled page text.

Cleans a page's body text, prefixes it with a title/description/topics
header so every chunk stays self-describing, and packs sentences into
overlapping chunks bounded by an estimated token budget.

Token counts here are a heuristic (the mean of a word-based and a
character-based estimate), not the tokenizer of any particular model.
"""

import logging
import math
import re

from src.db.models import ChunkData, ChunkType, Page

logger = logging.getLogger(__name__)

MAX_CHUNK_TOKENS = 1000
MIN_CHUNK_TOKENS = 200
CHUNK_OVERLAP = 100
# A trailing undersized chunk may grow its predecessor up to this factor
MERGE_SLACK = 1.2

_MIN_SENTENCE_CHARS = 10
_MAX_TOPIC_HEADINGS = 5
# One sentence of overlap per this many overlap tokens
_TOKENS_PER_OVERLAP_SENTENCE = 50

_ABBREVIATIONS = (
    "Mr.", "Mrs.", "Dr.", "Ms.", "Prof.", "Sr.", "Jr.",
    "Ph.D", "M.D", "B.A", "M.A", "B.S", "M.S",
)

_SENTENCE_END = re.compile(r"([.!?])\s+")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_CHARS = re.compile(r"[^\w\s.,;:!?'\"()\-/&<>]")
_REPEATED_PUNCT = re.compile(r"([.,;:!?])\1+")
_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
}
_DOUBLE_QUOTES = re.compile(r"[“”„«»]")
_SINGLE_QUOTES = re.compile(r"[‘’‚]")

_TYPE_KEYWORDS: list[tuple[ChunkType, tuple[str, ...]]] = [
    (ChunkType.INTRODUCTION, ("introduction", "overview")),
    (ChunkType.CONCLUSION, ("conclusion", "summary")),
    (ChunkType.FEATURES, ("features", "benefits")),
    (ChunkType.PRICING, ("pricing", "cost")),
    (ChunkType.TUTORIAL, ("how to", "tutorial")),
    (ChunkType.FAQ, ("faq", "question")),
]


def estimate_tokens(text: str) -> int:
    """Approximate token count: ceil of the mean of words/0.75 and chars/4."""
    if not text:
        return 0
    words = len(text.split())
    return math.ceil((words / 0.75 + len(text) / 4) / 2)


def clean_text(text: str) -> str:
    """Normalize extracted page text for chunking."""
    if not text:
        return ""
    for entity, replacement in _ENTITIES.items():
        text = text.replace(entity, replacement)
    text = _DOUBLE_QUOTES.sub('"', text)
    text = _SINGLE_QUOTES.sub("'", text)
    text = _UNSAFE_CHARS.sub("", text)
    text = _REPEATED_PUNCT.sub(r"\1", text)
    return _WHITESPACE.sub(" ", text).strip()


def build_contextual_content(
    title: str,
    description: str,
    content: str,
    headings: list[str],
) -> str:
    """Prepend a Title/Description/Main Topics header to the body text."""
    parts: list[str] = []
    if title:
        parts.append(f"Title: {title}.")
    if description:
        parts.append(f"Description: {description}")
    if headings:
        parts.append(f"Main Topics: {', '.join(headings[:_MAX_TOPIC_HEADINGS])}.")
    parts.append(f"Content: {content}")
    return "\n\n".join(parts)


def _ends_with_abbreviation(sentence: str) -> bool:
    return sentence.endswith(_ABBREVIATIONS)


def split_sentences(text: str) -> list[str]:
    """Split on sentence-ending punctuation followed by whitespace.

    A candidate break right after a known abbreviation ("Dr.", "Ph.D.") is
    not a sentence boundary. Fragments of 10 characters or fewer are dropped.
    """
    sentences: list[str] = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        candidate = text[start : match.start() + 1].strip()
        if not candidate:
            start = match.end()
            continue
        without_final = candidate[:-1] if candidate.endswith(".") else candidate
        if _ends_with_abbreviation(candidate) or _ends_with_abbreviation(without_final):
            continue
        sentences.append(candidate)
        start = match.end()

    remaining = text[start:].strip()
    if remaining:
        sentences.append(remaining)

    return [s for s in sentences if len(s) > _MIN_SENTENCE_CHARS]


def detect_chunk_type(text: str) -> ChunkType:
    """Coarse chunk label from keyword presence. Metadata only."""
    lower = text.lower()
    for chunk_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return chunk_type
    return ChunkType.CONTENT


def chunk_text(
    text: str,
    max_tokens: int = MAX_CHUNK_TOKENS,
    min_tokens: int = MIN_CHUNK_TOKENS,
    overlap: int = CHUNK_OVERLAP,
) -> list[ChunkData]:
    """Greedily pack sentences into chunks of at most ``max_tokens``.

    Algorithm:
    1. Append sentences to the open chunk while it stays within budget.
    2. When the next sentence would overflow, close the chunk and open a new
       one seeded with the last ``overlap // 50`` sentences of the old one.
    3. A final chunk under ``min_tokens`` is merged into its predecessor if
       the result stays within ``max_tokens * 1.2``; otherwise it is kept
       when it is the only chunk and dropped when it is not.

    A single sentence longer than the budget becomes a chunk on its own.
    """
    sentences = split_sentences(text)
    if not sentences:
        return []

    overlap_count = overlap // _TOKENS_PER_OVERLAP_SENTENCE
    spans: list[tuple[int, int]] = []  # inclusive sentence index ranges
    start = 0

    for i in range(1, len(sentences)):
        candidate = " ".join(sentences[start : i + 1])
        if estimate_tokens(candidate) > max_tokens:
            spans.append((start, i - 1))
            seed = max(start + 1, i - overlap_count)
            # Only keep the overlap if the new chunk still fits with sentence i
            while seed < i and estimate_tokens(" ".join(sentences[seed : i + 1])) > max_tokens:
                seed += 1
            start = seed
    spans.append((start, len(sentences) - 1))

    chunks_text = [" ".join(sentences[a : b + 1]) for a, b in spans]

    if len(chunks_text) > 1 and estimate_tokens(chunks_text[-1]) < min_tokens:
        prev_start, prev_end = spans[-2]
        _, last_end = spans[-1]
        # Joining the sentence range drops the overlap the two chunks share
        merged = " ".join(sentences[prev_start : last_end + 1])
        spans.pop()
        chunks_text.pop()
        if estimate_tokens(merged) <= max_tokens * MERGE_SLACK:
            spans[-1] = (prev_start, last_end)
            chunks_text[-1] = merged
        else:
            logger.debug(
                "Dropping undersized trailing chunk (sentences %d-%d)", prev_end + 1, last_end
            )

    return [
        ChunkData(
            content=content,
            chunk_index=index,
            token_estimate=estimate_tokens(content),
            chunk_type=detect_chunk_type(content),
            start_sentence=a,
            end_sentence=b,
        )
        for index, (content, (a, b)) in enumerate(zip(chunks_text, spans, strict=True))
    ]


def chunk_page(
    page: Page,
    max_tokens: int = MAX_CHUNK_TOKENS,
    min_tokens: int = MIN_CHUNK_TOKENS,
    overlap: int = CHUNK_OVERLAP,
) -> list[ChunkData]:
    """Clean, contextualize and chunk a page's body text."""
    cleaned = clean_text(page.content)
    contextual = build_contextual_content(
        page.title, page.description, cleaned, page.headings
    )
    chunks = chunk_text(contextual, max_tokens, min_tokens, overlap)
    logger.info(
        "Chunked '%s': %d chars -> %d chunks",
        page.title or page.url,
        len(cleaned),
        len(chunks),
    )
    return chunks

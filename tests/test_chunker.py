"""Tests for the sentence-based chunker."""

from src.db.models import ChunkType, Page
from src.ingestion.chunker import (
    build_contextual_content,
    chunk_page,
    chunk_text,
    clean_text,
    detect_chunk_type,
    estimate_tokens,
    split_sentences,
)


def _sentences(n: int) -> str:
    return " ".join(
        f"Sentence number {i} describes one more detail about the rental listing." for i in range(n)
    )


class TestSplitSentences:
    def test_splits_on_terminal_punctuation(self) -> None:
        text = "Homes are listed daily. Are you buying a house? Call us today!"
        assert split_sentences(text) == [
            "Homes are listed daily.",
            "Are you buying a house?",
            "Call us today!",
        ]

    def test_abbreviation_is_not_a_boundary(self) -> None:
        text = "Please ask Dr. Smith about the property. She knows the area well."
        assert split_sentences(text) == [
            "Please ask Dr. Smith about the property.",
            "She knows the area well.",
        ]

    def test_short_fragments_dropped(self) -> None:
        assert split_sentences("Yes. The garden faces north and gets sun.") == [
            "The garden faces north and gets sun."
        ]


def test_clean_text_normalizes() -> None:
    text = "Fish &amp; chips“quoted”’s  price!!!  ☃ done"
    assert clean_text(text) == "Fish & chips\"quoted\"'s price! done"


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    # 4 words -> 5.33, 21 chars -> 5.25, mean 5.29 -> 6
    assert estimate_tokens("four words right here") == 6


def test_contextual_header() -> None:
    text = build_contextual_content(
        "Pricing", "Plans and fees", "Body.", ["Plans", "Fees", "A", "B", "C", "Dropped"]
    )
    assert text == (
        "Title: Pricing.\n\nDescription: Plans and fees\n\n"
        "Main Topics: Plans, Fees, A, B, C.\n\nContent: Body."
    )


class TestChunkText:
    def test_empty(self) -> None:
        assert chunk_text("") == []

    def test_short_text_is_one_chunk(self) -> None:
        """A lone chunk below the minimum size is kept."""
        chunks = chunk_text("A short page about rentals in the valley.")
        assert len(chunks) == 1
        assert chunks[0].chunk_index == 0

    def test_chunks_respect_budget(self) -> None:
        chunks = chunk_text(_sentences(200), max_tokens=200, min_tokens=20, overlap=100)
        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.token_estimate <= 200 * 1.2
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_overlap_repeats_sentences(self) -> None:
        """Consecutive chunks share overlap // 50 sentences."""
        chunks = chunk_text(_sentences(40), max_tokens=200, min_tokens=20, overlap=100)
        first, second = chunks[0], chunks[1]
        assert second.start_sentence == first.end_sentence - 1
        assert split_sentences(second.content)[:2] == split_sentences(first.content)[-2:]

    def test_deterministic(self) -> None:
        text = _sentences(50)
        assert chunk_text(text, 200, 20, 100) == chunk_text(text, 200, 20, 100)

    def test_small_tail_merges_into_previous(self) -> None:
        # Six sentences fill the budget; the seventh alone is under the minimum
        chunks = chunk_text(_sentences(7), max_tokens=100, min_tokens=60, overlap=0)
        assert len(chunks) == 1
        assert (chunks[0].start_sentence, chunks[0].end_sentence) == (0, 6)

    def test_small_tail_dropped_when_merge_too_large(self) -> None:
        chunks = chunk_text(_sentences(9), max_tokens=100, min_tokens=60, overlap=0)
        assert len(chunks) == 1
        assert chunks[0].end_sentence == 5


def test_detect_chunk_type() -> None:
    assert detect_chunk_type("See our pricing table") == ChunkType.PRICING
    assert detect_chunk_type("Frequently asked question") == ChunkType.FAQ
    assert detect_chunk_type("An overview of services") == ChunkType.INTRODUCTION
    assert detect_chunk_type("Plain text") == ChunkType.CONTENT


def test_chunk_page_prefixes_title() -> None:
    page = Page(
        tenant_id="acme",
        url="https://acme.example/rentals",
        title="Rentals",
        content=_sentences(5),
    )
    chunks = chunk_page(page)
    assert len(chunks) == 1
    assert chunks[0].content.startswith("Title: Rentals.")

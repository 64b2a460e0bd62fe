"""Tests for vector helpers."""

import math

import pytest

from src.rag.vectors import average_embedding, cosine_similarity


def test_average_embedding_is_normalized() -> None:
    avg = average_embedding([[1.0, 0.0], [0.0, 1.0]])
    assert avg == pytest.approx([1 / math.sqrt(2), 1 / math.sqrt(2)])
    assert math.hypot(*avg) == pytest.approx(1.0)


def test_average_embedding_empty() -> None:
    assert average_embedding([]) == []


def test_average_embedding_zero_mean() -> None:
    assert average_embedding([[1.0, -1.0], [-1.0, 1.0]]) == [0.0, 0.0]


class TestCosineSimilarity:
    def test_identical(self) -> None:
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_orthogonal(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_degenerate_inputs(self) -> None:
        assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

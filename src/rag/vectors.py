"""Vector helpers: document signatures and cosine similarity."""

from collections.abc import Sequence

import numpy as np


def average_embedding(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Mean of equal-length vectors, L2-normalized.

    Returns an empty list for no input. A zero mean vector is returned as-is.
    """
    if not vectors:
        return []
    matrix = np.asarray(vectors, dtype=np.float64)
    mean = matrix.mean(axis=0)
    norm = np.linalg.norm(mean)
    if norm > 0:
        mean = mean / norm
    return mean.tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Returns 0.0 when the lengths differ, either vector is empty, or either
    has zero magnitude.
    """
    if len(a) != len(b) or not a:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)

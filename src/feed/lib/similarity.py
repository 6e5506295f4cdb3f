"""Cosine-similarity ranking of candidate vectors against a query vector.

Everything here is pure: no I/O, no state, same inputs give the same scores
in the same order.
"""

import math
from collections.abc import Sequence

from ..errors import DimensionMismatchError, ValidationError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of *a* and *b* in ``[-1, 1]``.

    Zero-vector policy: if either vector has a norm of exactly zero the result
    is ``0.0`` rather than NaN.

    Raises :class:`DimensionMismatchError` when the lengths differ.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Vectors must have the same length ({len(a)} != {len(b)})"
        )

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    # sqrt of the product keeps cosine_similarity(a, a) exactly 1.0
    denom = math.sqrt(norm_a * norm_b)
    if denom == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / denom))


def rank(
    query: Sequence[float],
    candidates: Sequence[tuple[str, Sequence[float]]],
    limit: int,
    min_score: float | None = None,
) -> list[tuple[str, float]]:
    """Score every ``(id, vector)`` candidate against *query*, best first.

    When *min_score* is given, candidates scoring ``<= min_score`` are dropped.
    Equal scores keep their input order. At most *limit* pairs are returned.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit!r}")

    scored = [(cid, cosine_similarity(query, vec)) for cid, vec in candidates]
    if min_score is not None:
        scored = [(cid, score) for cid, score in scored if score > min_score]

    # sorted() is stable, including with reverse=True
    scored = sorted(scored, key=lambda pair: pair[1], reverse=True)
    return scored[:limit]

"""Vector helpers shared by providers and the reference entity store."""

from __future__ import annotations

import math

from care_embeddings.domain.models import DimensionAdjustment


def fit_dimensions(vector: list[float], target: int) -> tuple[list[float], DimensionAdjustment]:
    """Pad or truncate a vector to the target width.

    Shorter vectors are padded by repeating the vector from its start, so a
    768-wide vector becomes exactly two copies of itself at 1536. This keeps
    vectors from different providers in one shared column, but the padded
    vector is an approximation and not equivalent to a native one.

    Args:
        vector: Vector returned by a provider
        target: Negotiated dimensionality

    Returns:
        Tuple of (fitted vector, adjustment applied)

    Raises:
        ValueError: If the vector is empty or the target is not positive
    """
    if target <= 0:
        raise ValueError(f"Target dimensions must be positive, got {target}")
    if not vector:
        raise ValueError("Cannot fit an empty vector")

    if len(vector) == target:
        return list(vector), "none"
    if len(vector) > target:
        return list(vector[:target]), "truncated"

    padded = list(vector)
    while len(padded) < target:
        padded.extend(vector[: target - len(padded)])
    return padded, "padded"


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Return cosine similarity of two equal-width vectors, 0.0 for zero vectors."""
    if len(a) != len(b):
        raise ValueError(f"Vector widths differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)

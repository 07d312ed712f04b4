"""Token estimation utilities.

Shared by the cost estimator, the batch planner, and providers that do not
report token usage, so every estimate in the pipeline agrees.
"""

from __future__ import annotations

import math


def estimate_tokens(text: str) -> int:
    """Estimate token count for text using character-based approximation.

    Uses the 1 token ≈ 4 characters heuristic, rounded up. Good enough for
    budgeting, never billing-accurate.

    Args:
        text: Text to estimate tokens for

    Returns:
        Estimated token count
    """
    return math.ceil(len(text) / 4)


def estimate_tokens_batch(texts: list[str]) -> list[int]:
    """Estimate tokens for a batch of texts.

    Args:
        texts: List of text strings

    Returns:
        List of token estimates corresponding to each text
    """
    return [estimate_tokens(text) for text in texts]


def total_tokens(texts: list[str]) -> int:
    """Calculate total tokens across multiple texts.

    Args:
        texts: List of text strings

    Returns:
        Sum of estimated tokens
    """
    return sum(estimate_tokens(text) for text in texts)


def apportion_tokens(total: int, texts: list[str]) -> list[int]:
    """Split a reported batch token total across items by text length.

    The shares always sum to ``total``; the rounding remainder goes to the
    longest texts first.

    Args:
        total: Token count reported for the whole batch
        texts: Texts that made up the batch

    Returns:
        Per-text token counts
    """
    if not texts:
        return []
    lengths = [len(text) for text in texts]
    length_sum = sum(lengths)
    if length_sum == 0:
        shares = [total // len(texts)] * len(texts)
    else:
        shares = [total * length // length_sum for length in lengths]
    remainder = total - sum(shares)
    for index in sorted(range(len(texts)), key=lambda i: lengths[i], reverse=True)[:remainder]:
        shares[index] += 1
    return shares

"""Utility functions for the care embeddings pipeline."""

from care_embeddings.utils.token_utils import (
    apportion_tokens,
    estimate_tokens,
    estimate_tokens_batch,
    total_tokens,
)

__all__ = [
    "apportion_tokens",
    "estimate_tokens",
    "estimate_tokens_batch",
    "total_tokens",
]

"""Batch planning for embedding generation.

This service encapsulates business logic for:
- Adaptive batch sizing from average text length
- Token-aware batching that preserves input order
"""

from __future__ import annotations

from dataclasses import dataclass

from care_embeddings.utils import estimate_tokens

LONG_TEXT_CHARS = 2000
SHORT_TEXT_CHARS = 500
LONG_TEXT_FACTOR = 0.5
SHORT_TEXT_FACTOR = 1.5
MIN_ADAPTIVE_BATCH = 10
MAX_ADAPTIVE_BATCH = 150
MAX_TOKENS_PER_BATCH = 250_000


@dataclass
class BatchPlan:
    """Planned split of items into provider calls.

    Attributes:
        batches: Lists of item indices, in input order
        batch_size: Effective maximum items per batch
        reason: Why this batch size was chosen
        avg_text_length: Average characters per item
    """

    batches: list[list[int]]
    batch_size: int
    reason: str
    avg_text_length: float

    @property
    def total_batches(self) -> int:
        """Return number of planned batches."""
        return len(self.batches)


class BatchPlanningService:
    """Service for sizing and splitting embedding batches."""

    @staticmethod
    def calculate_batch_size(
        texts: list[str],
        base_size: int,
        max_batch_size: int,
        adaptive: bool = True,
    ) -> tuple[int, str]:
        """Choose a batch size from the average text length.

        Long texts (average above 2000 chars) halve the base size with a floor
        of 10; short texts (average below 500 chars) grow it by half with a
        ceiling of 150. The result is always clamped to the model's maximum.

        Args:
            texts: Texts to be embedded
            base_size: Configured or model-recommended batch size
            max_batch_size: Hard per-request limit of the model
            adaptive: Disable to use ``base_size`` as-is (still clamped)

        Returns:
            Tuple of (batch size, human-readable reason)
        """
        size = base_size
        reason = f"configured size {base_size}"

        if adaptive and texts:
            avg_length = sum(len(text) for text in texts) / len(texts)
            if avg_length > LONG_TEXT_CHARS:
                size = max(MIN_ADAPTIVE_BATCH, int(base_size * LONG_TEXT_FACTOR))
                reason = f"reduced for long texts (avg {avg_length:.0f} chars)"
            elif avg_length < SHORT_TEXT_CHARS:
                size = min(MAX_ADAPTIVE_BATCH, int(base_size * SHORT_TEXT_FACTOR))
                reason = f"increased for short texts (avg {avg_length:.0f} chars)"

        if size > max_batch_size:
            size = max_batch_size
            reason = f"{reason}, clamped to model limit {max_batch_size}"
        return max(1, size), reason

    @staticmethod
    def create_token_aware_batches(
        texts: list[str],
        max_batch_size: int,
        max_tokens_per_batch: int = MAX_TOKENS_PER_BATCH,
    ) -> list[list[int]]:
        """Split item indices into batches that respect size and token limits.

        An item whose own estimate exceeds ``max_tokens_per_batch`` is placed
        alone in a batch; the provider decides whether to truncate or reject it.

        Args:
            texts: Texts to batch
            max_batch_size: Maximum items per batch
            max_tokens_per_batch: Maximum estimated tokens per batch

        Returns:
            Batches of indices into ``texts``, in input order
        """
        batches: list[list[int]] = []
        current_batch: list[int] = []
        current_tokens = 0

        for index, text in enumerate(texts):
            tokens = estimate_tokens(text)

            # Start new batch if adding this item would exceed limits
            if current_batch and (
                len(current_batch) >= max_batch_size
                or current_tokens + tokens > max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0

            current_batch.append(index)
            current_tokens += tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    @classmethod
    def plan(
        cls,
        texts: list[str],
        base_size: int,
        max_batch_size: int,
        adaptive: bool = True,
        max_tokens_per_batch: int = MAX_TOKENS_PER_BATCH,
    ) -> BatchPlan:
        """Size and split texts in one step."""
        size, reason = cls.calculate_batch_size(texts, base_size, max_batch_size, adaptive)
        avg_length = sum(len(text) for text in texts) / len(texts) if texts else 0.0
        return BatchPlan(
            batches=cls.create_token_aware_batches(texts, size, max_tokens_per_batch),
            batch_size=size,
            reason=reason,
            avg_text_length=avg_length,
        )

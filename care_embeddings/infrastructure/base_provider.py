"""Shared behavior for concrete embedding providers.

Subclasses implement the raw API call and the mapping from SDK exceptions
to the error taxonomy; this base handles input validation, dimension
negotiation, retries, width fitting, and usage accounting.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

from care_embeddings.domain.errors import (
    EmbeddingError,
    InvalidInputError,
    ProviderRequestError,
)
from care_embeddings.domain.models import (
    EmbeddingRequest,
    EmbeddingResult,
    ModelSpec,
    TaskHint,
    TokenUsage,
)
from care_embeddings.utils import apportion_tokens, estimate_tokens
from care_embeddings.utils.retry import RetryPolicy, call_with_retry
from care_embeddings.utils.vector_utils import fit_dimensions

logger = logging.getLogger(__name__)

OverflowPolicy = Literal["truncate", "reject"]


@dataclass
class RawEmbeddings:
    """Vectors as returned by a provider API.

    Attributes:
        vectors: One vector per input text
        total_tokens: Tokens reported for the whole call, None if not reported
    """

    vectors: list[list[float]]
    total_tokens: int | None = None


def truncate_at_word_boundary(text: str, max_chars: int) -> str:
    """Cut text to at most ``max_chars``, backing up to the last space if there is one."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    boundary = cut.rfind(" ")
    if boundary > 0:
        cut = cut[:boundary]
    return cut.rstrip()


class BaseEmbeddingProvider:
    """Base class for provider clients.

    Args:
        name: Provider name used in results and errors
        spec: Catalog entry of the configured model
        retry_policy: Backoff and attempt limits
        overflow_policy: What to do with text longer than the model accepts
        sleep: Awaitable sleep used between retries
    """

    name: str = ""

    def __init__(
        self,
        spec: ModelSpec,
        retry_policy: RetryPolicy | None = None,
        overflow_policy: OverflowPolicy = "truncate",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._spec = spec
        self._retry_policy = retry_policy or RetryPolicy()
        self._overflow_policy = overflow_policy
        self._sleep = sleep

    def get_model_name(self) -> str:
        """Get the model identifier."""
        return self._spec.name

    def get_model_spec(self) -> ModelSpec:
        """Get the catalog entry of the configured model."""
        return self._spec

    def is_configured(self) -> bool:
        """Return True if credentials are present."""
        return True

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    async def _embed(
        self,
        texts: list[str],
        api_dimensions: int | None,
        task: TaskHint,
        title: str | None,
    ) -> RawEmbeddings:
        raise NotImplementedError

    def _classify(self, exc: Exception) -> EmbeddingError | None:
        """Map an SDK exception to the taxonomy, or None if it is not a provider error."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    def prepare_text(self, text: str) -> str:
        """Validate text and apply the overflow policy.

        Raises:
            InvalidInputError: If text is empty, or too long under the reject policy
        """
        if not text or not text.strip():
            raise InvalidInputError("Text cannot be empty", provider=self.name)

        limit = self._spec.max_input_chars
        if len(text) <= limit:
            return text
        if self._overflow_policy == "reject":
            raise InvalidInputError(
                f"Text too long for {self._spec.name}: {len(text)} > {limit} characters",
                provider=self.name,
            )
        truncated = truncate_at_word_boundary(text, limit)
        logger.warning(
            f"Truncated text from {len(text)} to {len(truncated)} characters for {self._spec.name}"
        )
        return truncated

    def negotiate_dimensions(self, requested: int) -> int:
        """Return the width to generate at: the requested one if supported, else the model default.

        The returned vectors are still fitted to the requested width afterwards.
        """
        if requested in self._spec.supported_dimensions:
            return requested
        logger.warning(
            f"{self._spec.name} does not support {requested} dimensions, "
            f"using default {self._spec.default_dimensions}"
        )
        return self._spec.default_dimensions

    def api_dimensions(self, negotiated: int) -> int | None:
        """Return the width to request from the API, None when the API takes no width."""
        if not self._spec.accepts_output_dimensions:
            return None
        return min(negotiated, self._spec.native_dimensions)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, request: EmbeddingRequest) -> EmbeddingResult:
        """Embed one text with retries.

        Raises:
            EmbeddingError: Classified provider or input error
        """
        results = await self._generate([request], title=request.title)
        return results[0]

    async def generate_batch(self, requests: list[EmbeddingRequest]) -> list[EmbeddingResult]:
        """Embed several texts in one provider call.

        All requests are embedded with the dimensions and task of the first
        one; titles are only sent for single-item calls.

        Raises:
            EmbeddingError: Classified provider or input error for the whole batch
        """
        if not requests:
            return []
        title = requests[0].title if len(requests) == 1 else None
        return await self._generate(requests, title=title)

    async def check_connection(self) -> bool:
        """Make a minimal request to verify credentials and connectivity."""
        try:
            await self.generate(
                EmbeddingRequest(text="connection test", dimensions=self._spec.default_dimensions)
            )
        except EmbeddingError as e:
            logger.error(f"{self.name} connection check failed: {e}")
            return False
        return True

    async def _call_classified(
        self,
        texts: list[str],
        api_dimensions: int | None,
        task: TaskHint,
        title: str | None,
    ) -> RawEmbeddings:
        try:
            return await self._embed(texts, api_dimensions, task, title)
        except EmbeddingError:
            raise
        except Exception as exc:
            classified = self._classify(exc)
            if classified is None:
                raise
            raise classified from exc

    async def _generate(
        self, requests: list[EmbeddingRequest], title: str | None
    ) -> list[EmbeddingResult]:
        first = requests[0]
        texts = [self.prepare_text(request.text) for request in requests]
        dimensions = self.negotiate_dimensions(first.dimensions)
        api_dimensions = self.api_dimensions(dimensions)

        started = time.perf_counter()
        raw = await call_with_retry(
            self._retry_policy,
            lambda: self._call_classified(texts, api_dimensions, first.task, title),
            sleep=self._sleep,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        if len(raw.vectors) != len(texts):
            raise ProviderRequestError(
                f"{self.name} returned {len(raw.vectors)} embeddings for {len(texts)} texts",
                provider=self.name,
            )

        if raw.total_tokens is not None:
            token_counts = apportion_tokens(raw.total_tokens, texts)
            estimated = False
        else:
            token_counts = [estimate_tokens(text) for text in texts]
            estimated = True

        results = []
        for request, text, vector, tokens in zip(requests, texts, raw.vectors, token_counts, strict=True):
            if not vector:
                raise ProviderRequestError(f"{self.name} returned an empty embedding", provider=self.name)
            # Results always match the caller's width so providers can share one vector store
            fitted, adjustment = fit_dimensions(vector, request.dimensions)
            if adjustment != "none":
                logger.warning(
                    f"Dimension mismatch from {self._spec.name}: got {len(vector)}, "
                    f"expected {request.dimensions} ({adjustment})"
                )
            results.append(
                EmbeddingResult(
                    embedding=fitted,
                    provider=self.name,
                    model=self._spec.name,
                    usage=TokenUsage(input_tokens=tokens, total_tokens=tokens, estimated=estimated),
                    estimated_cost=tokens * self._spec.cost_per_million_tokens / 1_000_000,
                    generation_time_ms=elapsed_ms / len(texts),
                    text_length=len(text),
                    task=request.task,
                    dimension_adjustment=adjustment,
                )
            )
        return results

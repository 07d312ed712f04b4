"""Unified embedding service.

Responsible for turning text into normalized embedding results.
Single Responsibility: cache lookup, budget gating, provider selection,
fallback, and cache write for every embedding request.

Each request moves through an explicit state machine::

    PENDING → CACHE_CHECK → DONE                                  (cache hit)
    PENDING → CACHE_CHECK → BUDGET_CHECK → GENERATING
            → [FALLBACK_GENERATING] → CACHE_WRITE → DONE
    any non-terminal state → FAILED
"""

import logging
from collections.abc import Iterable
from enum import Enum

from pydantic import ValidationError

from care_embeddings.domain.embedding_provider import EmbeddingProvider
from care_embeddings.domain.errors import (
    AllProvidersFailedError,
    EmbeddingError,
    InvalidInputError,
    ProviderAttempt,
    ProviderConfigurationError,
)
from care_embeddings.domain.models import (
    CacheStats,
    EmbeddingRequest,
    EmbeddingResult,
    TaskHint,
    UsageRecord,
)
from care_embeddings.domain.usage_ledger import SpendLedger
from care_embeddings.services.cost_service import BudgetMonitor, CostEstimator
from care_embeddings.services.embedding_cache import EmbeddingCache, normalize_key

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    """Lifecycle of one embedding request."""

    PENDING = "pending"
    CACHE_CHECK = "cache_check"
    BUDGET_CHECK = "budget_check"
    GENERATING = "generating"
    FALLBACK_GENERATING = "fallback_generating"
    CACHE_WRITE = "cache_write"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.PENDING: frozenset(
        {RequestState.CACHE_CHECK, RequestState.BUDGET_CHECK, RequestState.FAILED}
    ),
    RequestState.CACHE_CHECK: frozenset(
        {RequestState.DONE, RequestState.BUDGET_CHECK, RequestState.FAILED}
    ),
    RequestState.BUDGET_CHECK: frozenset({RequestState.GENERATING, RequestState.FAILED}),
    RequestState.GENERATING: frozenset(
        {
            RequestState.FALLBACK_GENERATING,
            RequestState.CACHE_WRITE,
            RequestState.DONE,
            RequestState.FAILED,
        }
    ),
    RequestState.FALLBACK_GENERATING: frozenset(
        {RequestState.CACHE_WRITE, RequestState.DONE, RequestState.FAILED}
    ),
    RequestState.CACHE_WRITE: frozenset({RequestState.DONE, RequestState.FAILED}),
    RequestState.DONE: frozenset(),
    RequestState.FAILED: frozenset(),
}


class InvalidStateTransition(RuntimeError):
    """A request tried to move between states that are not connected."""


class RequestTracker:
    """Tracks one request through the state machine."""

    def __init__(self):
        self.state = RequestState.PENDING
        self.history: list[RequestState] = [RequestState.PENDING]

    def advance(self, new_state: RequestState) -> None:
        """Move to ``new_state``.

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"Cannot move from {self.state.value} to {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self) -> None:
        """Move to FAILED unless already terminal."""
        if self.state not in (RequestState.DONE, RequestState.FAILED):
            self.advance(RequestState.FAILED)


class UnifiedEmbeddingService:
    """Single entry point for embedding text.

    Args:
        providers: Provider clients keyed by name
        primary: Configured primary provider name, None to pick by fallback order
        fallback_order: Provider priority used for default and fallback selection
        cache: Result cache, None to disable caching
        cost_estimator: Token and cost estimator
        budget_monitor: Budget gate, None to disable budget checks
        ledger: Spend ledger that successful generations are recorded on
        default_dimensions: Width used when a call does not specify one
        enable_fallback: Default for per-call ``enable_fallback``
    """

    def __init__(
        self,
        providers: dict[str, EmbeddingProvider],
        primary: str | None = None,
        fallback_order: Iterable[str] = ("gemini", "openai"),
        cache: EmbeddingCache | None = None,
        cost_estimator: CostEstimator | None = None,
        budget_monitor: BudgetMonitor | None = None,
        ledger: SpendLedger | None = None,
        default_dimensions: int = 1536,
        enable_fallback: bool = True,
    ):
        self._providers = providers
        self._primary = primary
        self._fallback_order = list(fallback_order)
        self._cache = cache
        self._cost_estimator = cost_estimator or CostEstimator()
        self._budget_monitor = budget_monitor
        self._ledger = ledger
        self.default_dimensions = default_dimensions
        self._enable_fallback = enable_fallback

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def _configured(self, name: str) -> bool:
        provider = self._providers.get(name)
        return provider is not None and provider.is_configured()

    def resolve_provider(self, override: str | None = None) -> str:
        """Pick the provider for a call.

        Order: explicit override, configured primary, then the first
        credentialed provider in fallback order.

        Raises:
            ProviderConfigurationError: If no usable provider exists
        """
        if override is not None:
            if override not in self._providers:
                raise ProviderConfigurationError(f"Unknown embedding provider '{override}'")
            return override
        if self._primary is not None and self._configured(self._primary):
            return self._primary
        for name in self._fallback_order:
            if self._configured(name):
                if self._primary is not None:
                    logger.warning(f"Primary provider '{self._primary}' not configured, using '{name}'")
                return name
        raise ProviderConfigurationError("No embedding provider is configured")

    def resolve_fallback(self, primary: str) -> str | None:
        """Return the first credentialed provider other than ``primary``."""
        for name in self._fallback_order:
            if name != primary and self._configured(name):
                return name
        return None

    def get_provider(self, name: str | None = None) -> EmbeddingProvider:
        """Return the provider client for a name, or the default provider."""
        return self._providers[self.resolve_provider(name)]

    # ------------------------------------------------------------------
    # Cache and budget helpers
    # ------------------------------------------------------------------

    def lookup_cached(self, text: str, dimensions: int | None = None) -> EmbeddingResult | None:
        """Return a cached result of the right width, marked as a cache hit."""
        if self._cache is None:
            return None
        dims = dimensions or self.default_dimensions
        entry = self._cache.get(text)
        if entry is None:
            return None
        if entry.result.dimensions != dims:
            logger.debug(f"Cached vector has {entry.result.dimensions} dims, need {dims}; regenerating")
            return None
        return entry.result.model_copy(update={"cache_hit": True})

    def is_cached(self, text: str, dimensions: int | None = None) -> bool:
        """Return True if a fresh result of the right width is cached, without touching stats."""
        if self._cache is None:
            return False
        entry = self._cache.peek(text)
        return entry is not None and entry.result.dimensions == (dimensions or self.default_dimensions)

    def estimate_cost(self, texts: list[str], provider: str | None = None) -> float:
        """Estimate what embedding ``texts`` with a provider would cost."""
        model = self._providers[self.resolve_provider(provider)].get_model_name()
        return self._cost_estimator.estimate_batch_cost(texts, model)

    def require_budget(self, texts: list[str], provider: str | None = None) -> None:
        """Raise BudgetExceededError if embedding ``texts`` would break a ceiling."""
        if self._budget_monitor is None or not texts:
            return
        self._budget_monitor.require_budget(self.estimate_cost(texts, provider))

    def cache_stats(self) -> CacheStats | None:
        """Return cache statistics, None when caching is disabled."""
        return self._cache.stats() if self._cache is not None else None

    def _record_usage(self, results: list[EmbeddingResult]) -> None:
        if self._ledger is None or not results:
            return
        first = results[0]
        record = UsageRecord(
            provider=first.provider,
            model=first.model,
            tokens=sum(result.usage.total_tokens for result in results),
            cost=sum(result.estimated_cost for result in results),
            items=len(results),
        )
        try:
            self._ledger.record_usage(record)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to record embedding usage: {e}")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @staticmethod
    def _build_requests(
        texts: list[str], dimensions: int, task: TaskHint, title: str | None
    ) -> list[EmbeddingRequest]:
        try:
            return [
                EmbeddingRequest(text=text, dimensions=dimensions, task=task, title=title)
                for text in texts
            ]
        except ValidationError as e:
            raise InvalidInputError("Text cannot be empty") from e

    async def _generate_with_fallback(
        self,
        tracker: RequestTracker,
        requests: list[EmbeddingRequest],
        primary: str,
        enable_fallback: bool,
        check_fallback_budget: bool,
    ) -> list[EmbeddingResult]:
        tracker.advance(RequestState.GENERATING)
        try:
            return await self._providers[primary].generate_batch(requests)
        except InvalidInputError:
            tracker.fail()
            raise
        except EmbeddingError as primary_error:
            fallback = self.resolve_fallback(primary) if enable_fallback else None
            if fallback is None:
                tracker.fail()
                raise
            logger.warning(f"Provider '{primary}' failed ({primary_error}), falling back to '{fallback}'")
            tracker.advance(RequestState.FALLBACK_GENERATING)
            if check_fallback_budget:
                try:
                    self.require_budget([request.text for request in requests], fallback)
                except EmbeddingError:
                    tracker.fail()
                    raise
            try:
                results = await self._providers[fallback].generate_batch(requests)
            except EmbeddingError as fallback_error:
                tracker.fail()
                raise AllProvidersFailedError(
                    [
                        ProviderAttempt(primary, str(primary_error), type(primary_error).__name__),
                        ProviderAttempt(fallback, str(fallback_error), type(fallback_error).__name__),
                    ]
                ) from fallback_error
            return [result.model_copy(update={"fallback_used": True}) for result in results]

    async def embed(
        self,
        text: str,
        *,
        provider: str | None = None,
        dimensions: int | None = None,
        task: TaskHint = TaskHint.DOCUMENT,
        title: str | None = None,
        use_cache: bool = True,
        enable_fallback: bool | None = None,
        check_budget: bool = True,
        check_fallback_budget: bool | None = None,
    ) -> EmbeddingResult:
        """Embed one text.

        Args:
            text: Text to embed
            provider: Provider override
            dimensions: Output width, defaults to the service default
            task: Intended use of the vector
            title: Optional document title
            use_cache: Read and write the result cache
            enable_fallback: Override the service-wide fallback switch
            check_budget: Gate on the budget before generating
            check_fallback_budget: Gate on the budget before a fallback call, defaults
                to ``check_budget``; callers that already priced the primary pass
                keep this on

        Returns:
            Normalized EmbeddingResult

        Raises:
            InvalidInputError: Text is empty or rejected
            BudgetExceededError: Generating would exceed a ceiling
            AllProvidersFailedError: Primary and fallback both failed
            EmbeddingError: Primary failed and no fallback was available
        """
        results = await self.embed_many(
            [text],
            provider=provider,
            dimensions=dimensions,
            task=task,
            title=title,
            use_cache=use_cache,
            enable_fallback=enable_fallback,
            check_budget=check_budget,
            check_fallback_budget=check_fallback_budget,
        )
        return results[0]

    async def embed_many(
        self,
        texts: list[str],
        *,
        provider: str | None = None,
        dimensions: int | None = None,
        task: TaskHint = TaskHint.DOCUMENT,
        title: str | None = None,
        use_cache: bool = True,
        enable_fallback: bool | None = None,
        check_budget: bool = True,
        check_fallback_budget: bool | None = None,
    ) -> list[EmbeddingResult]:
        """Embed several texts; cache misses go to the provider in one call.

        Texts that normalize to the same cache key are generated once.
        ``results[i]`` always corresponds to ``texts[i]``.

        Raises:
            Same errors as :meth:`embed`, for the whole call
        """
        if not texts:
            return []

        tracker = RequestTracker()
        dims = dimensions or self.default_dimensions
        fallback_enabled = self._enable_fallback if enable_fallback is None else enable_fallback

        try:
            requests = self._build_requests(texts, dims, task, title)
        except InvalidInputError:
            tracker.fail()
            raise

        results: list[EmbeddingResult | None] = [None] * len(texts)
        if use_cache and self._cache is not None:
            tracker.advance(RequestState.CACHE_CHECK)
            for index, text in enumerate(texts):
                results[index] = self.lookup_cached(text, dims)
            if all(result is not None for result in results):
                tracker.advance(RequestState.DONE)
                return results  # type: ignore[return-value]

        # Deduplicate misses by cache key, keeping first-seen order
        pending: dict[str, list[int]] = {}
        for index, result in enumerate(results):
            if result is None:
                pending.setdefault(normalize_key(texts[index]), []).append(index)
        miss_requests = [requests[indices[0]] for indices in pending.values()]

        tracker.advance(RequestState.BUDGET_CHECK)
        try:
            primary = self.resolve_provider(provider)
            if check_budget:
                self.require_budget([request.text for request in miss_requests], primary)
        except EmbeddingError:
            tracker.fail()
            raise

        generated = await self._generate_with_fallback(
            tracker,
            miss_requests,
            primary,
            fallback_enabled,
            check_budget if check_fallback_budget is None else check_fallback_budget,
        )
        self._record_usage(generated)

        if use_cache and self._cache is not None:
            tracker.advance(RequestState.CACHE_WRITE)
            for request, result in zip(miss_requests, generated, strict=True):
                self._cache.put(request.text, result)

        for indices, result in zip(pending.values(), generated, strict=True):
            for index in indices:
                results[index] = result

        tracker.advance(RequestState.DONE)
        return results  # type: ignore[return-value]

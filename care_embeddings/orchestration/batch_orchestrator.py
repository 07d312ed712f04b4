"""Batch orchestrator for embedding many entities.

Responsible for fanning entities out to the embedding service in batches.
Single Responsibility: plan batches, bound concurrency, isolate per-item
failures, persist results, and report monotonic progress.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from care_embeddings.domain.errors import EmbeddingError
from care_embeddings.domain.models import (
    BatchStats,
    EmbeddingResult,
    EntityError,
    IndexableEntity,
    IndexingOptions,
    IndexingProgress,
)
from care_embeddings.domain.services.embedding_service import UnifiedEmbeddingService
from care_embeddings.services.batch_planning_service import BatchPlanningService

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[IndexingProgress], None]
PersistCallback = Callable[[IndexableEntity, EmbeddingResult], Awaitable[None]]


@dataclass
class BatchProcessingResult:
    """Outcome of one orchestrated run.

    Attributes:
        results: ``results[i]`` is the result for ``entities[i]``, None if it failed
        progress: Final progress snapshot
        stats: Aggregate statistics
    """

    results: list[EmbeddingResult | None]
    progress: IndexingProgress
    stats: BatchStats


@dataclass
class _ItemOutcome:
    index: int
    result: EmbeddingResult | None
    error: EntityError | None


class BatchOrchestrator:
    """Orchestrator for concurrent, fault-isolated batch embedding.

    Single Responsibility: Coordinate batches of embedding calls; never
    abort a run because of one item.
    """

    def __init__(
        self,
        embedding_service: UnifiedEmbeddingService,
        planner: BatchPlanningService | None = None,
    ):
        """Initialize batch orchestrator.

        Args:
            embedding_service: Service that generates embeddings
            planner: Batch sizing and splitting strategy
        """
        self._embedding_service = embedding_service
        self._planner = planner or BatchPlanningService()

    async def process_batch(
        self,
        entities: list[IndexableEntity],
        options: IndexingOptions,
        observer: ProgressObserver | None = None,
        persist: PersistCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchProcessingResult:
        """Embed and optionally persist every entity.

        Args:
            entities: Entities with prepared text
            options: Batch size, concurrency, provider and cache options
            observer: Called with a progress copy after every completed batch
            persist: Awaited for every successful result
            cancel_event: When set, unstarted batches are skipped and observers go quiet

        Returns:
            BatchProcessingResult aligned with ``entities``

        Raises:
            BudgetExceededError: If the uncached items would exceed a ceiling (before any call)
            ProviderConfigurationError: If no provider can be resolved
        """
        started = time.perf_counter()
        service = self._embedding_service
        use_cache = not options.force_regenerate
        texts = [entity.text for entity in entities]

        progress = IndexingProgress(
            total=len(entities),
            started_at=datetime.now(UTC),
            started_monotonic=time.monotonic(),
        )
        lock = threading.Lock()
        results: list[EmbeddingResult | None] = [None] * len(entities)

        if options.budget_check:
            uncached = [
                text for text in texts if not (use_cache and service.is_cached(text, options.dimensions))
            ]
            service.require_budget(uncached, options.provider)

        spec = service.get_provider(options.provider).get_model_spec()
        plan = self._planner.plan(
            texts,
            base_size=options.batch_size,
            max_batch_size=spec.max_batch_size,
            adaptive=options.adaptive_batch_size,
        )
        progress.total_batches = plan.total_batches
        logger.info(
            f"Embedding {len(entities)} entities in {plan.total_batches} batches "
            f"(size {plan.batch_size}, {plan.reason}, concurrency {options.max_concurrency})"
        )

        if not entities:
            progress.is_complete = True
            progress.completed_at = datetime.now(UTC)
            self._notify(observer, progress.model_copy(deep=True), cancel_event)
            return BatchProcessingResult(results, progress, BatchStats(batch_size=plan.batch_size))

        semaphore = asyncio.Semaphore(options.max_concurrency)

        async def run_batch(indices: list[int]) -> None:
            if cancel_event is not None and cancel_event.is_set():
                return
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                outcomes = await self._embed_batch(entities, indices, options, use_cache)
                outcomes = await self._persist(entities, outcomes, persist)

            with lock:
                for outcome in outcomes:
                    results[outcome.index] = outcome.result
                    if outcome.error is None:
                        progress.successful += 1
                        if outcome.result is not None and outcome.result.cache_hit:
                            progress.cached += 1
                    else:
                        progress.failed += 1
                        progress.errors.append(outcome.error)
                        if outcome.error.stage == "persistence":
                            progress.persistence_failures += 1
                        else:
                            progress.generation_failures += 1
                progress.processed += len(outcomes)
                progress.current_batch += 1
                if progress.processed == progress.total:
                    progress.is_complete = True
                    progress.completed_at = datetime.now(UTC)
                snapshot = progress.model_copy(deep=True)
            self._notify(observer, snapshot, cancel_event)

        tasks = [asyncio.create_task(run_batch(indices)) for indices in plan.batches]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        generated = [result for result in results if result is not None and not result.cache_hit]
        stats = BatchStats(
            total_items=len(entities),
            cache_hits=sum(1 for result in results if result is not None and result.cache_hit),
            generated=len(generated),
            failed=progress.generation_failures,
            total_tokens=sum(result.usage.total_tokens for result in generated),
            total_cost=sum(result.estimated_cost for result in generated),
            batch_size=plan.batch_size,
            batch_size_reason=plan.reason,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.info(
            f"Batch run finished: {progress.successful} succeeded, {progress.failed} failed, "
            f"{stats.cache_hits} from cache, ${stats.total_cost:.6f}"
        )
        return BatchProcessingResult(results, progress.model_copy(deep=True), stats)

    async def _embed_batch(
        self,
        entities: list[IndexableEntity],
        indices: list[int],
        options: IndexingOptions,
        use_cache: bool,
    ) -> list[_ItemOutcome]:
        """Embed one batch, retrying item by item if the batch call fails."""
        service = self._embedding_service
        call_options = {
            "provider": options.provider,
            "dimensions": options.dimensions,
            "use_cache": use_cache,
            "enable_fallback": options.enable_fallback,
            # The primary pass was priced up front; a fallback provider is priced per call
            "check_budget": False,
            "check_fallback_budget": options.budget_check,
        }
        texts = [entities[index].text for index in indices]
        try:
            batch_results = await service.embed_many(texts, **call_options)
            return [
                _ItemOutcome(index, result, None)
                for index, result in zip(indices, batch_results, strict=True)
            ]
        except EmbeddingError as e:
            logger.warning(f"Batch of {len(indices)} failed ({e}), retrying items individually")

        outcomes = []
        for index in indices:
            entity = entities[index]
            try:
                result = await service.embed(entity.text, **call_options)
                outcomes.append(_ItemOutcome(index, result, None))
            except EmbeddingError as e:
                logger.error(f"Failed to embed {entity.id} ({entity.name}): {e}")
                outcomes.append(
                    _ItemOutcome(
                        index,
                        None,
                        EntityError(entity_id=entity.id, entity_name=entity.name, error=str(e)),
                    )
                )
        return outcomes

    async def _persist(
        self,
        entities: list[IndexableEntity],
        outcomes: list[_ItemOutcome],
        persist: PersistCallback | None,
    ) -> list[_ItemOutcome]:
        if persist is None:
            return outcomes
        persisted = []
        for outcome in outcomes:
            if outcome.result is None:
                persisted.append(outcome)
                continue
            entity = entities[outcome.index]
            try:
                await persist(entity, outcome.result)
                persisted.append(outcome)
            except Exception as e:  # noqa: BLE001
                logger.error(f"Failed to persist embedding for {entity.id}: {e}")
                persisted.append(
                    _ItemOutcome(
                        outcome.index,
                        outcome.result,
                        EntityError(
                            entity_id=entity.id,
                            entity_name=entity.name,
                            error=str(e),
                            stage="persistence",
                        ),
                    )
                )
        return persisted

    @staticmethod
    def _notify(
        observer: ProgressObserver | None,
        snapshot: IndexingProgress,
        cancel_event: asyncio.Event | None,
    ) -> None:
        if observer is None or (cancel_event is not None and cancel_event.is_set()):
            return
        try:
            observer(snapshot)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Progress observer raised: {e}")

"""Indexing job manager.

Responsible for running bulk indexing jobs against the entity store.
Single Responsibility: discover entities, prepare their text, hand them to
the batch orchestrator, persist results, and expose job state.

Job lifecycle::

    IDLE → DISCOVERING → RUNNING → COMPLETE | FAILED

A new job may start from IDLE, COMPLETE or FAILED; only one job is active
per manager at a time.
"""

import asyncio
import logging
import threading
from datetime import UTC, datetime
from enum import Enum

from care_embeddings.domain.entity_store import EntityRepository
from care_embeddings.domain.errors import IndexingInProgressError, PersistenceError
from care_embeddings.domain.models import (
    EmbeddingResult,
    EmbeddingStatus,
    EntityRecord,
    EntityType,
    IndexableEntity,
    IndexingOptions,
    IndexingProgress,
)
from care_embeddings.domain.services.text_preparation_service import TextPreparationService
from care_embeddings.orchestration.batch_orchestrator import BatchOrchestrator, ProgressObserver

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle of an indexing job."""

    IDLE = "idle"
    DISCOVERING = "discovering"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


_ACTIVE_STATES = (JobState.DISCOVERING, JobState.RUNNING)


class IndexingJobManager:
    """Runs one indexing job at a time and exposes its progress."""

    def __init__(
        self,
        repository: EntityRepository,
        orchestrator: BatchOrchestrator,
        text_preparation: TextPreparationService | None = None,
        default_options: IndexingOptions | None = None,
    ):
        """Initialize the job manager.

        Args:
            repository: Entity store to discover from and persist to
            orchestrator: Batch orchestrator that generates embeddings
            text_preparation: Builds embedding text from entity records
            default_options: Options used when a job is started without any
        """
        self._repository = repository
        self._orchestrator = orchestrator
        self._text_preparation = text_preparation or TextPreparationService()
        self._default_options = default_options or IndexingOptions()
        self._lock = threading.Lock()
        self._state = JobState.IDLE
        self._progress = IndexingProgress()
        self._cancel_event: asyncio.Event | None = None
        self._job_id = 0
        self.last_error: str | None = None

    @property
    def state(self) -> JobState:
        """Return the current job state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Return True while a job is discovering or running."""
        return self.state in _ACTIVE_STATES

    def get_progress(self) -> IndexingProgress:
        """Return a copy of the current progress snapshot."""
        with self._lock:
            return self._progress.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    def _acquire(self) -> int:
        with self._lock:
            if self._state in _ACTIVE_STATES:
                raise IndexingInProgressError(f"Indexing job already {self._state.value}")
            self._job_id += 1
            self._state = JobState.DISCOVERING
            self._progress = IndexingProgress(started_at=datetime.now(UTC))
            self._cancel_event = asyncio.Event()
            self.last_error = None
            return self._job_id

    async def run(
        self,
        options: IndexingOptions | None = None,
        observer: ProgressObserver | None = None,
    ) -> IndexingProgress:
        """Run an indexing job to completion.

        Args:
            options: Job options, defaults to the manager's defaults
            observer: Called with a progress copy after every completed batch

        Returns:
            Final progress snapshot

        Raises:
            IndexingInProgressError: If another job is active
            BudgetExceededError: If the job would exceed a budget ceiling
        """
        job_id = self._acquire()
        return await self._execute(job_id, options or self._default_options, observer)

    def start(
        self,
        options: IndexingOptions | None = None,
        observer: ProgressObserver | None = None,
    ) -> "asyncio.Task[IndexingProgress]":
        """Start an indexing job in the background.

        Must be called from a running event loop. Fails immediately, before
        any task is created, if a job is already active.

        Returns:
            Task resolving to the final progress snapshot

        Raises:
            IndexingInProgressError: If another job is active
        """
        job_id = self._acquire()
        return asyncio.create_task(
            self._execute(job_id, options or self._default_options, observer),
            name=f"indexing-job-{job_id}",
        )

    async def reindex(
        self,
        entity_ids: list[str],
        options: IndexingOptions | None = None,
        observer: ProgressObserver | None = None,
    ) -> IndexingProgress:
        """Regenerate embeddings for specific entities, ignoring cached results."""
        base = options or self._default_options
        return await self.run(
            base.model_copy(update={"entity_ids": list(entity_ids), "force_regenerate": True}),
            observer,
        )

    def cancel(self) -> bool:
        """Abort the active job.

        Unstarted batches are skipped, observers stop receiving snapshots,
        and a new job may start immediately. In-flight provider calls drain.

        Returns:
            True if a job was cancelled
        """
        with self._lock:
            if self._state not in _ACTIVE_STATES:
                return False
            if self._cancel_event is not None:
                self._cancel_event.set()
            self._state = JobState.FAILED
            self._progress = self._progress.model_copy(update={"cancelled": True})
            self.last_error = "Cancelled"
        logger.warning("Indexing job cancelled")
        return True

    def reset(self) -> None:
        """Return a finished manager to IDLE with empty progress.

        Raises:
            IndexingInProgressError: If a job is active
        """
        with self._lock:
            if self._state in _ACTIVE_STATES:
                raise IndexingInProgressError("Cannot reset while a job is active")
            self._state = JobState.IDLE
            self._progress = IndexingProgress()
            self.last_error = None

    # ------------------------------------------------------------------
    # Store passthroughs
    # ------------------------------------------------------------------

    def embedding_status(self, entity_type: EntityType | None = None) -> EmbeddingStatus:
        """Return embedding coverage from the store."""
        return self._repository.embedding_status(entity_type)

    def reset_embeddings(self, entity_type: EntityType | None = None) -> int:
        """Clear stored embeddings so the next job regenerates them.

        Raises:
            IndexingInProgressError: If a job is active
        """
        if self.is_running:
            raise IndexingInProgressError("Cannot reset embeddings while a job is active")
        return self._repository.reset_embeddings(entity_type)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _is_current(self, job_id: int) -> bool:
        return self._job_id == job_id and self._state in _ACTIVE_STATES

    def _discover(self, options: IndexingOptions) -> list[EntityRecord]:
        if options.entity_ids:
            return self._repository.fetch_by_ids(options.entity_ids)
        if options.force_regenerate:
            return self._repository.fetch_all(options.entity_type)
        return self._repository.fetch_missing_embeddings(options.entity_type)

    def _prepare(self, record: EntityRecord) -> IndexableEntity:
        try:
            return self._text_preparation.prepare(record)
        except (TypeError, ValueError, AttributeError) as e:
            # One malformed record must not fail the job; index it by name alone
            logger.warning(f"Could not build text for {record.id} ({e}), using its name")
            return IndexableEntity(id=record.id, name=record.name, text=record.name)

    async def _persist(self, entity: IndexableEntity, result: EmbeddingResult) -> None:
        metadata = {
            "provider": result.provider,
            "model": result.model,
            "dimensions": result.dimensions,
            "generated_at": result.generated_at.isoformat(),
            "text_length": result.text_length,
            "fallback_used": result.fallback_used,
            "dimension_adjustment": result.dimension_adjustment,
            "cache_hit": result.cache_hit,
        }
        try:
            await asyncio.to_thread(self._repository.update_embedding, entity.id, result.embedding, metadata)
        except Exception as e:
            raise PersistenceError(f"Failed to store embedding for {entity.id}: {e}") from e

    async def _execute(
        self,
        job_id: int,
        options: IndexingOptions,
        observer: ProgressObserver | None,
    ) -> IndexingProgress:
        cancel_event = self._cancel_event
        try:
            records = await asyncio.to_thread(self._discover, options)
            entities = [self._prepare(record) for record in records]
            logger.info(f"Discovered {len(entities)} entities to index")

            with self._lock:
                if not self._is_current(job_id):
                    return self._progress.model_copy(deep=True)
                self._state = JobState.RUNNING
                self._progress = self._progress.model_copy(update={"total": len(entities)})

            def on_progress(snapshot: IndexingProgress) -> None:
                with self._lock:
                    if not self._is_current(job_id):
                        return
                    self._progress = snapshot
                if observer is not None:
                    observer(snapshot)

            result = await self._orchestrator.process_batch(
                entities,
                options,
                observer=on_progress,
                persist=self._persist,
                cancel_event=cancel_event,
            )
        except asyncio.CancelledError:
            self._finish_failed(job_id, "Cancelled", cancelled=True)
            raise
        except Exception as e:
            logger.error(f"Indexing job failed: {e}")
            self._finish_failed(job_id, str(e))
            raise

        with self._lock:
            if not self._is_current(job_id):
                # Cancelled while in flight; keep the cancelled snapshot
                return self._progress.model_copy(deep=True)
            self._progress = result.progress
            self._state = JobState.COMPLETE
            logger.info(
                f"Indexing complete: {result.progress.successful}/{result.progress.total} succeeded, "
                f"{result.progress.failed} failed"
            )
            return self._progress.model_copy(deep=True)

    def _finish_failed(self, job_id: int, error: str, cancelled: bool = False) -> None:
        with self._lock:
            if not self._is_current(job_id):
                return
            self._state = JobState.FAILED
            self._progress = self._progress.model_copy(
                update={"cancelled": cancelled, "completed_at": datetime.now(UTC)}
            )
            self.last_error = error

"""Integration tests for IndexingJobManager with the JSONL entity store."""

import asyncio

import pytest

from care_embeddings.domain.errors import IndexingInProgressError, InvalidInputError, QuotaExhaustedError
from care_embeddings.domain.models import IndexingOptions, UsageRecord
from care_embeddings.orchestration.batch_orchestrator import BatchOrchestrator
from care_embeddings.orchestration.indexing_job_manager import IndexingJobManager, JobState
from care_embeddings.services.cost_service import BudgetMonitor
from tests.conftest import StubProvider, make_hospital, make_service


def make_manager(store, provider, cache=None) -> IndexingJobManager:
    orchestrator = BatchOrchestrator(make_service(provider, cache=cache))
    return IndexingJobManager(store, orchestrator, default_options=IndexingOptions(dimensions=768))


class TestRun:
    """Tests for complete indexing runs."""

    def test_indexes_active_entities_without_embeddings(self, entity_store, gemini_provider):
        """Test active entities get embeddings and inactive ones are left alone."""
        manager = make_manager(entity_store, gemini_provider)

        progress = asyncio.run(manager.run())

        assert progress.total == 2
        assert progress.successful == 2
        assert manager.state == JobState.COMPLETE
        assert len(entity_store.get_embedding("h1")) == 768
        assert entity_store.get_embedding("h3") is None
        status = manager.embedding_status()
        assert status.coverage == 100.0

    def test_second_run_finds_nothing(self, entity_store, gemini_provider):
        """Test entities with embeddings are not rediscovered."""
        manager = make_manager(entity_store, gemini_provider)
        asyncio.run(manager.run())

        progress = asyncio.run(manager.run())

        assert progress.total == 0
        assert progress.is_complete

    def test_embedding_metadata_stored(self, entity_store, gemini_provider):
        """Test provider details are written with the vector."""
        manager = make_manager(entity_store, gemini_provider)
        asyncio.run(manager.run())

        stored = {entity.id: entity for entity in entity_store._load()}
        metadata = stored["h1"].embedding_metadata
        assert metadata["provider"] == "gemini"
        assert metadata["dimensions"] == 768
        assert metadata["fallback_used"] is False

    def test_reindex_forces_regeneration(self, entity_store, gemini_provider, cache):
        """Test reindexing specific IDs bypasses the cache."""
        manager = make_manager(entity_store, gemini_provider, cache=cache)
        asyncio.run(manager.run())
        calls_before = len(gemini_provider.calls)

        progress = asyncio.run(manager.reindex(["h2", "unknown"]))

        assert progress.total == 1
        assert progress.successful == 1
        assert progress.cached == 0
        assert len(gemini_provider.calls) == calls_before + 1

    def test_generation_failure_recorded(self, entity_store):
        """Test a failing entity leaves the job complete with an error."""
        entity_store.upsert_entities([make_hospital("h4", "FAIL Hospital")])
        provider = StubProvider("gemini", fail_marker="FAIL", fail_error=InvalidInputError)
        manager = make_manager(entity_store, provider)

        progress = asyncio.run(manager.run())

        assert progress.successful == 2
        assert progress.failed == 1
        assert progress.errors[0].entity_id == "h4"
        assert manager.state == JobState.COMPLETE

    def test_reset_embeddings(self, entity_store, gemini_provider):
        """Test clearing embeddings makes entities discoverable again."""
        manager = make_manager(entity_store, gemini_provider)
        asyncio.run(manager.run())

        assert manager.reset_embeddings() == 2
        assert manager.embedding_status().without_embeddings == 2


class TestJobControl:
    """Tests for mutual exclusion and cancellation."""

    def test_second_job_rejected_while_running(self, entity_store, gemini_provider):
        """Test only one job runs at a time."""
        manager = make_manager(entity_store, gemini_provider)

        async def scenario():
            task = manager.start()
            with pytest.raises(IndexingInProgressError):
                await manager.run()
            return await task

        progress = asyncio.run(scenario())

        assert progress.successful == 2
        assert manager.state == JobState.COMPLETE

    def test_cancel_marks_failed_and_allows_new_job(self, entity_store, gemini_provider):
        """Test cancel stops the job and a new one can start immediately."""
        manager = make_manager(entity_store, gemini_provider)

        async def scenario():
            task = manager.start()
            await asyncio.sleep(0)
            assert manager.cancel()
            assert manager.state == JobState.FAILED
            assert manager.get_progress().cancelled
            cancelled = await task
            rerun = await manager.run()
            return cancelled, rerun

        cancelled, rerun = asyncio.run(scenario())

        assert cancelled.cancelled
        assert manager.state == JobState.COMPLETE
        assert rerun.is_complete

    def test_cancel_without_job(self, entity_store, gemini_provider):
        """Test cancelling an idle manager is a no-op."""
        assert not make_manager(entity_store, gemini_provider).cancel()

    def test_reset_returns_to_idle(self, entity_store, gemini_provider):
        """Test reset clears progress after a finished job."""
        manager = make_manager(entity_store, gemini_provider)
        asyncio.run(manager.run())

        manager.reset()

        assert manager.state == JobState.IDLE
        assert manager.get_progress().total == 0

    def test_progress_snapshot_is_a_copy(self, entity_store, gemini_provider):
        """Test callers cannot mutate the manager's progress."""
        manager = make_manager(entity_store, gemini_provider)
        asyncio.run(manager.run())

        snapshot = manager.get_progress()
        snapshot.successful = 99

        assert manager.get_progress().successful == 2

    def test_progress_readable_while_running(self, entity_store, gemini_provider):
        """Test polling progress during a job sees consistent, growing snapshots."""
        entity_store.upsert_entities([make_hospital(f"x{i}", f"Clinic {i}") for i in range(6)])
        manager = make_manager(entity_store, gemini_provider)
        options = IndexingOptions(dimensions=768, batch_size=1, max_concurrency=2, adaptive_batch_size=False)
        polled = []

        async def scenario():
            task = manager.start(options)
            while not task.done():
                polled.append((manager.state, manager.get_progress()))
                await asyncio.sleep(0)
            return await task

        final = asyncio.run(scenario())

        running = [snapshot for state, snapshot in polled if state == JobState.RUNNING]
        assert running
        processed = [snapshot.processed for snapshot in running]
        assert processed == sorted(processed)
        assert all(s.successful + s.failed == s.processed <= s.total for s in running)
        assert final.successful == 8


class TestBudgetAndInput:
    """Tests for budget gating and malformed records during indexing."""

    def test_fallback_cannot_exceed_budget(self, entity_store, ledger):
        """Test an out-of-quota free provider does not spend past the ceiling via fallback."""
        ledger.record_usage(UsageRecord(provider="openai", model="m", tokens=1, cost=10.0))
        gemini = StubProvider("gemini", fail_marker=" ", fail_error=QuotaExhaustedError)
        openai_stub = StubProvider("openai", report_tokens=True)
        service = make_service(
            gemini, openai_stub, budget_monitor=BudgetMonitor(ledger, daily_budget=10.0), ledger=ledger
        )
        manager = IndexingJobManager(entity_store, BatchOrchestrator(service))

        progress = asyncio.run(manager.run())

        assert progress.failed == 2
        assert manager.state == JobState.COMPLETE
        assert openai_stub.calls == []
        assert entity_store.get_embedding("h1") is None
        assert ledger.current_spend().daily == pytest.approx(10.0)

    def test_malformed_record_does_not_fail_job(self, entity_store, gemini_provider):
        """Test odd attribute types are tolerated and every entity is indexed."""
        entity_store.upsert_entities(
            [
                make_hospital("h4", "Textual Beds Hospital", bed_count="400"),
                make_hospital("h5", "Broken Metadata Hospital", metadata="not a mapping"),
            ]
        )
        manager = make_manager(entity_store, gemini_provider)

        progress = asyncio.run(manager.run())

        assert progress.successful == 4
        assert progress.failed == 0
        assert "medium-sized hospital with 400 beds" in " ".join(gemini_provider.embedded_texts)
        assert "Broken Metadata Hospital" in gemini_provider.embedded_texts

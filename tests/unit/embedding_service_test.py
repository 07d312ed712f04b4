"""Tests for UnifiedEmbeddingService."""

import asyncio
from datetime import UTC, datetime

import pytest

from care_embeddings.domain.errors import (
    AllProvidersFailedError,
    BudgetExceededError,
    InvalidInputError,
    ProviderConfigurationError,
    QuotaExhaustedError,
    TransientProviderError,
)
from care_embeddings.domain.models import UsageRecord
from care_embeddings.domain.services.embedding_service import (
    InvalidStateTransition,
    RequestState,
    RequestTracker,
)
from care_embeddings.services.cost_service import BudgetMonitor
from tests.conftest import StubProvider, make_service


class TestProviderResolution:
    """Tests for choosing the primary and fallback provider."""

    def test_defaults_to_first_configured_in_fallback_order(self):
        """Test the first credentialed provider is used without a primary."""
        service = make_service(StubProvider("gemini", configured=False), StubProvider("openai"))
        assert service.resolve_provider() == "openai"

    def test_configured_primary_wins(self, gemini_provider, openai_provider):
        """Test an explicit primary is used when configured."""
        service = make_service(gemini_provider, openai_provider, primary="openai")
        assert service.resolve_provider() == "openai"
        assert service.resolve_fallback("openai") == "gemini"

    def test_unknown_override_rejected(self, gemini_provider):
        """Test an unknown provider name is a configuration error."""
        with pytest.raises(ProviderConfigurationError):
            make_service(gemini_provider).resolve_provider("cohere")

    def test_nothing_configured(self):
        """Test no credentialed provider is a configuration error."""
        service = make_service(StubProvider("gemini", configured=False))
        with pytest.raises(ProviderConfigurationError):
            service.resolve_provider()


class TestEmbed:
    """Tests for single-text embedding."""

    def test_embed_returns_requested_width(self, gemini_provider):
        """Test the result has the requested dimensions and provider."""
        result = asyncio.run(make_service(gemini_provider).embed("cardiac surgery", dimensions=768))

        assert result.dimensions == 768
        assert result.provider == "gemini"
        assert not result.cache_hit
        assert not result.fallback_used

    def test_empty_text_rejected_without_provider_call(self, gemini_provider):
        """Test empty input fails before reaching a provider."""
        with pytest.raises(InvalidInputError):
            asyncio.run(make_service(gemini_provider).embed("   "))
        assert gemini_provider.calls == []

    def test_cache_makes_repeat_calls_free(self, gemini_provider, cache):
        """Test a repeated text is served from cache with an identical vector."""
        service = make_service(gemini_provider, cache=cache)

        first = asyncio.run(service.embed("Cardiac Surgery"))
        second = asyncio.run(service.embed("  cardiac surgery "))

        assert len(gemini_provider.calls) == 1
        assert second.cache_hit
        assert second.embedding == first.embedding
        assert service.cache_stats().hits == 1

    def test_cached_result_of_other_width_is_regenerated(self, gemini_provider, cache):
        """Test a width mismatch counts as a cache miss."""
        service = make_service(gemini_provider, cache=cache)

        asyncio.run(service.embed("text", dimensions=1536))
        result = asyncio.run(service.embed("text", dimensions=768))

        assert result.dimensions == 768
        assert not result.cache_hit
        assert len(gemini_provider.calls) == 2

    def test_use_cache_false_bypasses_cache(self, gemini_provider, cache):
        """Test cache reads and writes can be disabled per call."""
        service = make_service(gemini_provider, cache=cache)

        asyncio.run(service.embed("text", use_cache=False))
        asyncio.run(service.embed("text", use_cache=False))

        assert len(gemini_provider.calls) == 2
        assert len(cache) == 0


class TestFallback:
    """Tests for primary to fallback switching."""

    def test_falls_back_on_quota_exhaustion(self, openai_provider):
        """Test a quota failure on the primary is served by the fallback."""
        gemini = StubProvider("gemini", errors=[QuotaExhaustedError("quota", provider="gemini")])
        service = make_service(gemini, openai_provider)

        result = asyncio.run(service.embed("text"))

        assert result.provider == "openai"
        assert result.fallback_used
        assert len(gemini.calls) == 1

    def test_all_providers_failed_lists_both(self):
        """Test both failures are reported together."""
        gemini = StubProvider("gemini", errors=[QuotaExhaustedError("gemini quota", provider="gemini")])
        openai_stub = StubProvider("openai", errors=[QuotaExhaustedError("openai quota", provider="openai")])
        service = make_service(gemini, openai_stub)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            asyncio.run(service.embed("text"))

        attempts = exc_info.value.attempts
        assert [a.provider for a in attempts] == ["gemini", "openai"]
        assert attempts[0].error_type == "QuotaExhaustedError"
        assert "gemini quota" in str(exc_info.value)

    def test_invalid_input_never_falls_back(self, openai_provider):
        """Test malformed input fails without trying the fallback."""
        gemini = StubProvider("gemini", errors=[InvalidInputError("bad", provider="gemini")])
        service = make_service(gemini, openai_provider)

        with pytest.raises(InvalidInputError):
            asyncio.run(service.embed("text"))
        assert openai_provider.calls == []

    def test_fallback_disabled_surfaces_primary_error(self, openai_provider):
        """Test the primary's error surfaces unchanged when fallback is off."""
        gemini = StubProvider("gemini", errors=[QuotaExhaustedError("quota", provider="gemini")])
        service = make_service(gemini, openai_provider)

        with pytest.raises(QuotaExhaustedError):
            asyncio.run(service.embed("text", enable_fallback=False))
        assert openai_provider.calls == []

    def test_transient_errors_retried_before_fallback(self, openai_provider):
        """Test retries on the primary happen before any fallback."""
        gemini = StubProvider("gemini", errors=[TransientProviderError("503"), TransientProviderError("503")])
        service = make_service(gemini, openai_provider)

        result = asyncio.run(service.embed("text"))

        assert result.provider == "gemini"
        assert len(gemini.calls) == 3
        assert openai_provider.calls == []


class TestBudget:
    """Tests for budget gating and usage recording."""

    def test_records_usage_on_ledger(self, openai_provider, ledger):
        """Test a paid generation is recorded on the spend ledger."""
        service = make_service(openai_provider, ledger=ledger)

        asyncio.run(service.embed("a" * 400))

        records = ledger.records
        assert len(records) == 1
        assert records[0].provider == "openai"
        assert records[0].cost > 0

    def test_budget_rejection_before_generation(self, openai_provider, ledger):
        """Test a request over budget never reaches the provider."""
        ledger.record_usage(
            UsageRecord(provider="openai", model="m", tokens=1, cost=10.0, recorded_at=datetime.now(UTC))
        )
        monitor = BudgetMonitor(ledger, daily_budget=10.0)
        service = make_service(openai_provider, budget_monitor=monitor, ledger=ledger)

        with pytest.raises(BudgetExceededError):
            asyncio.run(service.embed("a" * 400))
        assert openai_provider.calls == []

    def test_free_provider_passes_exhausted_budget(self, gemini_provider, ledger):
        """Test zero-cost generation is allowed after the ceiling is reached."""
        ledger.record_usage(
            UsageRecord(provider="openai", model="m", tokens=1, cost=20.0, recorded_at=datetime.now(UTC))
        )
        monitor = BudgetMonitor(ledger, daily_budget=10.0)
        service = make_service(gemini_provider, budget_monitor=monitor)

        result = asyncio.run(service.embed("text"))

        assert result.estimated_cost == 0.0

    def test_paid_fallback_checked_against_budget(self, openai_provider, ledger):
        """Test a free primary failing over to a paid provider is still gated."""
        ledger.record_usage(
            UsageRecord(provider="openai", model="m", tokens=1, cost=10.0, recorded_at=datetime.now(UTC))
        )
        gemini = StubProvider("gemini", errors=[QuotaExhaustedError("quota", provider="gemini")])
        monitor = BudgetMonitor(ledger, daily_budget=10.0)
        service = make_service(gemini, openai_provider, budget_monitor=monitor, ledger=ledger)

        with pytest.raises(BudgetExceededError) as exc_info:
            asyncio.run(service.embed("a" * 400, check_budget=False, check_fallback_budget=True))

        assert exc_info.value.ceiling == "daily"
        assert openai_provider.calls == []
        assert len(ledger.records) == 1

    def test_fallback_budget_follows_check_budget_by_default(self, openai_provider, ledger):
        """Test skipping the budget check also skips it for the fallback."""
        ledger.record_usage(
            UsageRecord(provider="openai", model="m", tokens=1, cost=10.0, recorded_at=datetime.now(UTC))
        )
        gemini = StubProvider("gemini", errors=[QuotaExhaustedError("quota", provider="gemini")])
        monitor = BudgetMonitor(ledger, daily_budget=10.0)
        service = make_service(gemini, openai_provider, budget_monitor=monitor)

        result = asyncio.run(service.embed("query text", check_budget=False))

        assert result.provider == "openai"
        assert result.fallback_used


class TestEmbedMany:
    """Tests for multi-text embedding."""

    def test_results_aligned_and_duplicates_generated_once(self, gemini_provider, cache):
        """Test duplicates share one generation and order is preserved."""
        service = make_service(gemini_provider, cache=cache)
        asyncio.run(service.embed("cached"))

        results = asyncio.run(service.embed_many(["alpha", "cached", "Alpha ", "beta"]))

        assert len(results) == 4
        assert results[1].cache_hit
        assert results[0].embedding == results[2].embedding
        assert gemini_provider.calls[-1]["texts"] == ["alpha", "beta"]

    def test_empty_list(self, gemini_provider):
        """Test no texts produce no results and no calls."""
        assert asyncio.run(make_service(gemini_provider).embed_many([])) == []
        assert gemini_provider.calls == []


class TestRequestTracker:
    """Tests for the request state machine."""

    def test_happy_path(self):
        """Test the normal generation path is accepted."""
        tracker = RequestTracker()
        for state in (
            RequestState.CACHE_CHECK,
            RequestState.BUDGET_CHECK,
            RequestState.GENERATING,
            RequestState.FALLBACK_GENERATING,
            RequestState.CACHE_WRITE,
            RequestState.DONE,
        ):
            tracker.advance(state)
        assert tracker.state == RequestState.DONE

    def test_cannot_skip_budget_check(self):
        """Test generation cannot start before the budget check."""
        tracker = RequestTracker()
        tracker.advance(RequestState.CACHE_CHECK)
        with pytest.raises(InvalidStateTransition):
            tracker.advance(RequestState.GENERATING)

    def test_terminal_states_are_final(self):
        """Test nothing follows DONE, and fail() is a no-op there."""
        tracker = RequestTracker()
        tracker.advance(RequestState.CACHE_CHECK)
        tracker.advance(RequestState.DONE)
        tracker.fail()
        assert tracker.state == RequestState.DONE
        with pytest.raises(InvalidStateTransition):
            tracker.advance(RequestState.BUDGET_CHECK)

"""Configure tests."""

import asyncio

import pytest

from care_embeddings.config.provider_catalog import MODEL_CATALOG
from care_embeddings.domain.models import IndexableEntity
from care_embeddings.domain.services.embedding_service import UnifiedEmbeddingService
from care_embeddings.infrastructure.base_provider import BaseEmbeddingProvider, RawEmbeddings
from care_embeddings.infrastructure.jsonl_entity_store import JsonlEntityRepository, StoredEntity
from care_embeddings.services.cost_service import BudgetMonitor, InMemorySpendLedger
from care_embeddings.services.embedding_cache import EmbeddingCache
from care_embeddings.utils.retry import RetryPolicy


async def no_sleep(_delay: float) -> None:
    """Retry sleep that returns immediately."""


def stub_vector(text: str, width: int) -> list[float]:
    """Deterministic, non-zero vector derived from the text."""
    seed = sum(ord(char) for char in text) % 17 + 1
    return [((seed * (i + 1)) % 11 + 1) / 11 for i in range(width)]


class StubProvider(BaseEmbeddingProvider):
    """Provider with a scripted API, built on the real base class.

    Args:
        name: Provider name ('gemini' or 'openai')
        model: Catalog model to mimic
        native_width: Width the fake API returns, defaults to the requested width
        fail_marker: Any call containing a text with this substring raises ``fail_error``
        fail_error: Error factory for marked texts
        errors: Errors raised by successive calls before succeeding
        report_tokens: Report a token total like OpenAI does
        configured: Value of is_configured()
    """

    def __init__(
        self,
        name: str = "gemini",
        model: str | None = None,
        native_width: int | None = None,
        fail_marker: str | None = None,
        fail_error=None,
        errors=None,
        report_tokens: bool = False,
        configured: bool = True,
        **kwargs,
    ):
        model = model or ("gemini-embedding-001" if name == "gemini" else "text-embedding-3-small")
        kwargs.setdefault("sleep", no_sleep)
        kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=0.0))
        super().__init__(MODEL_CATALOG[model], **kwargs)
        self.name = name
        self.native_width = native_width
        self.fail_marker = fail_marker
        self.fail_error = fail_error
        self.errors = list(errors or [])
        self.report_tokens = report_tokens
        self.configured = configured
        self.calls: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self) -> bool:
        return self.configured

    async def _embed(self, texts, api_dimensions, task, title) -> RawEmbeddings:
        self.calls.append({"texts": list(texts), "dimensions": api_dimensions, "task": task, "title": title})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.001)
            if self.errors:
                raise self.errors.pop(0)
            if self.fail_marker and any(self.fail_marker in text for text in texts):
                raise self.fail_error(f"{self.name} refused marked text")
            width = self.native_width or api_dimensions or self._spec.native_dimensions
            total = sum(len(text) // 4 + 1 for text in texts) if self.report_tokens else None
            return RawEmbeddings(vectors=[stub_vector(text, width) for text in texts], total_tokens=total)
        finally:
            self.in_flight -= 1

    def _classify(self, exc: Exception):
        return None

    @property
    def embedded_texts(self) -> list[str]:
        """Return every text sent to the fake API, in call order."""
        return [text for call in self.calls for text in call["texts"]]


def make_service(
    *providers: StubProvider,
    primary: str | None = None,
    cache: EmbeddingCache | None = None,
    budget_monitor: BudgetMonitor | None = None,
    ledger=None,
    default_dimensions: int = 1536,
    enable_fallback: bool = True,
) -> UnifiedEmbeddingService:
    """Build a UnifiedEmbeddingService around stub providers."""
    return UnifiedEmbeddingService(
        {provider.name: provider for provider in providers},
        primary=primary,
        fallback_order=("gemini", "openai"),
        cache=cache,
        budget_monitor=budget_monitor,
        ledger=ledger,
        default_dimensions=default_dimensions,
        enable_fallback=enable_fallback,
    )


def make_hospital(entity_id: str, name: str, **attributes) -> StoredEntity:
    """Helper to create a stored hospital for testing."""
    embedding = attributes.pop("embedding", None)
    is_active = attributes.pop("is_active", True)
    return StoredEntity(
        id=entity_id,
        name=name,
        entity_type="hospital",
        attributes=attributes,
        is_active=is_active,
        embedding=embedding,
    )


def make_entities(count: int, fail_index: int | None = None) -> list[IndexableEntity]:
    """Create prepared entities; the one at ``fail_index`` carries the FAIL marker."""
    return [
        IndexableEntity(
            id=f"h{i}",
            name=f"Hospital {i}",
            text=f"Hospital {i} general hospital{' FAIL' if i == fail_index else ''}",
        )
        for i in range(count)
    ]


# ============================================================================
# Common Fixtures
# ============================================================================


@pytest.fixture
def gemini_provider():
    """Configured stub Gemini provider."""
    return StubProvider("gemini")


@pytest.fixture
def openai_provider():
    """Configured stub OpenAI provider that reports token usage."""
    return StubProvider("openai", report_tokens=True)


@pytest.fixture
def ledger():
    """Process-local spend ledger."""
    return InMemorySpendLedger()


@pytest.fixture
def cache():
    """Result cache that never sweeps opportunistically."""
    return EmbeddingCache(ttl_seconds=3600, sweep_probability=0.0)


@pytest.fixture
def entity_store(tmp_path):
    """Real JSONL entity store seeded with three hospitals."""
    store = JsonlEntityRepository(tmp_path / "entities.jsonl")
    store.upsert_entities(
        [
            make_hospital("h1", "Boston General", city="Boston", state="MA", type="GENERAL"),
            make_hospital("h2", "Cambridge Heart Center", city="Cambridge", state="MA", type="SPECIALTY"),
            make_hospital("h3", "Closed Clinic", city="Boston", state="MA", is_active=False),
        ]
    )
    return store

"""Domain models for the care directory embedding pipeline.

Uses Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

DimensionAdjustment = Literal["none", "padded", "truncated"]
EntityType = Literal["hospital", "doctor"]
ErrorStage = Literal["generation", "persistence"]


class TaskHint(str, Enum):
    """What an embedding will be used for."""

    DOCUMENT = "document"
    QUERY = "query"
    SIMILARITY = "similarity"


# ============================================================================
# Embedding Requests and Results
# ============================================================================


class EmbeddingRequest(BaseModel):
    """A single text to embed, constructed per call."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Text to embed")
    dimensions: int = Field(default=1536, gt=0, description="Requested output dimensionality")
    task: TaskHint = Field(default=TaskHint.DOCUMENT, description="Intended use of the vector")
    title: str | None = Field(default=None, description="Optional document title")
    model: str | None = Field(default=None, description="Model override")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Reject empty or whitespace-only text."""
        if not v or not v.strip():
            raise ValueError("Text cannot be empty")
        return v


class TokenUsage(BaseModel):
    """Token accounting for one result."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(ge=0)
    total_tokens: int = Field(ge=0)
    estimated: bool = Field(default=False, description="True when tokens were not reported")


class EmbeddingResult(BaseModel):
    """Normalized output of any provider."""

    model_config = ConfigDict(frozen=True)

    embedding: list[float] = Field(description="Vector of the negotiated width")
    provider: str
    model: str
    usage: TokenUsage
    estimated_cost: float = Field(default=0.0, ge=0.0)
    generation_time_ms: float = Field(default=0.0, ge=0.0)
    cache_hit: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    text_length: int = Field(default=0, ge=0)
    task: TaskHint = TaskHint.DOCUMENT
    dimension_adjustment: DimensionAdjustment = "none"
    fallback_used: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def dimensions(self) -> int:
        """Return vector width."""
        return len(self.embedding)


class CacheEntry(BaseModel):
    """A cached result keyed by normalized text."""

    model_config = ConfigDict(frozen=True)

    key: str
    result: EmbeddingResult
    inserted_at: float = Field(description="Monotonic clock reading at insert")


class CacheStats(BaseModel):
    """Snapshot of cache contents and effectiveness."""

    size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    model_distribution: dict[str, int] = Field(default_factory=dict)
    oldest_age_s: float | None = None
    newest_age_s: float | None = None

    @computed_field  # type: ignore[misc]
    @property
    def hit_rate(self) -> float:
        """Return fraction of lookups served from cache."""
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


# ============================================================================
# Cost and Budget
# ============================================================================


class SpendSnapshot(BaseModel):
    """Spend accumulated in the current day and month."""

    daily: float = Field(default=0.0, ge=0.0)
    monthly: float = Field(default=0.0, ge=0.0)


class UsageRecord(BaseModel):
    """One billable generation appended to the spend ledger."""

    provider: str
    model: str
    tokens: int = Field(ge=0)
    cost: float = Field(ge=0.0)
    items: int = Field(default=1, ge=1)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BudgetState(BaseModel):
    """Current spend against configured ceilings."""

    daily_spend: float
    monthly_spend: float
    daily_budget: float
    monthly_budget: float
    warning_threshold: float

    @computed_field  # type: ignore[misc]
    @property
    def daily_utilization(self) -> float:
        """Return fraction of the daily budget used."""
        return self.daily_spend / self.daily_budget if self.daily_budget else 0.0

    @computed_field  # type: ignore[misc]
    @property
    def monthly_utilization(self) -> float:
        """Return fraction of the monthly budget used."""
        return self.monthly_spend / self.monthly_budget if self.monthly_budget else 0.0


class BudgetDecision(BaseModel):
    """Outcome of a budget check."""

    allowed: bool
    reason: str | None = None
    warning: str | None = None
    projected_daily: float = 0.0
    projected_monthly: float = 0.0


# ============================================================================
# Provider Configuration
# ============================================================================


class ModelSpec(BaseModel):
    """Static facts about one embedding model."""

    model_config = ConfigDict(frozen=True)

    name: str
    provider: str
    native_dimensions: int
    default_dimensions: int
    supported_dimensions: tuple[int, ...]
    max_input_chars: int
    cost_per_million_tokens: float = 0.0
    recommended_batch_size: int = 20
    max_batch_size: int = 100
    accepts_output_dimensions: bool = True


class ProviderConfig(BaseModel):
    """Resolved configuration for one provider."""

    name: str
    model: str
    default_dimensions: int
    supported_dimensions: tuple[int, ...]
    has_credentials: bool
    cost_per_token: float = 0.0


# ============================================================================
# Entities
# ============================================================================


class EntityRecord(BaseModel):
    """A hospital or doctor as stored in the directory."""

    id: str
    name: str
    entity_type: EntityType = "hospital"
    attributes: dict[str, Any] = Field(default_factory=dict)
    has_embedding: bool = False
    is_active: bool = True


class IndexableEntity(BaseModel):
    """An entity with its prepared embedding text."""

    id: str
    name: str
    text: str


class EmbeddingStatus(BaseModel):
    """Coverage of embeddings across active entities."""

    total: int = 0
    with_embeddings: int = 0
    without_embeddings: int = 0

    @computed_field  # type: ignore[misc]
    @property
    def coverage(self) -> float:
        """Return percentage of entities that have an embedding."""
        return round(self.with_embeddings / self.total * 100, 2) if self.total else 0.0


# ============================================================================
# Indexing
# ============================================================================


class EntityError(BaseModel):
    """Per-item failure recorded during batch processing."""

    entity_id: str
    entity_name: str
    error: str
    stage: ErrorStage = "generation"


class IndexingProgress(BaseModel):
    """Progress of one indexing run. Snapshots handed to observers are copies."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    generation_failures: int = 0
    persistence_failures: int = 0
    cached: int = 0
    current_batch: int = 0
    total_batches: int = 0
    is_complete: bool = False
    cancelled: bool = False
    errors: list[EntityError] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    started_monotonic: float | None = Field(default=None, exclude=True)

    @computed_field  # type: ignore[misc]
    @property
    def estimated_time_remaining_s(self) -> float | None:
        """Return remaining seconds extrapolated from the processing rate so far."""
        if self.is_complete or not self.processed or self.started_monotonic is None:
            return None
        elapsed = time.monotonic() - self.started_monotonic
        rate = self.processed / elapsed if elapsed > 0 else 0.0
        if rate <= 0:
            return None
        return round((self.total - self.processed) / rate, 1)


class IndexingOptions(BaseModel):
    """Options for one indexing or batch run."""

    entity_ids: list[str] | None = None
    entity_type: EntityType | None = None
    batch_size: int = Field(default=20, ge=1, le=100)
    max_concurrency: int = Field(default=3, ge=1, le=10)
    force_regenerate: bool = False
    adaptive_batch_size: bool = True
    dimensions: int = Field(default=1536, gt=0)
    provider: str | None = None
    enable_fallback: bool = True
    budget_check: bool = True


class BatchStats(BaseModel):
    """Aggregate statistics of one orchestrated batch run."""

    total_items: int = 0
    cache_hits: int = 0
    generated: int = 0
    failed: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    batch_size: int = 0
    batch_size_reason: str = ""
    duration_ms: float = 0.0

    @computed_field  # type: ignore[misc]
    @property
    def cache_hit_rate(self) -> float:
        """Return fraction of items served from cache."""
        return self.cache_hits / self.total_items if self.total_items else 0.0


# ============================================================================
# Search
# ============================================================================


class EntitySearchRequest(BaseModel):
    """Arguments for the store's ranked entity search."""

    query: str
    query_embedding: list[float] | None = None
    location: str | None = None
    filters: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=10, ge=1)
    similarity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)


class SearchCandidate(BaseModel):
    """One ranked search hit."""

    id: str
    name: str
    entity_type: EntityType = "hospital"
    score: float = 0.0
    attributes: dict[str, Any] = Field(default_factory=dict)


class SearchOutcome(BaseModel):
    """Search results plus how they were obtained."""

    candidates: list[SearchCandidate] = Field(default_factory=list)
    used_semantic_search: bool = False
    embedding_error: str | None = None


class SimilarEntitiesOutcome(BaseModel):
    """Entities whose stored embeddings are closest to a target entity's."""

    target_id: str
    target_name: str
    has_embedding: bool = True
    candidates: list[SearchCandidate] = Field(default_factory=list)
    similarity_threshold: float
    limit: int

    @computed_field  # type: ignore[misc]
    @property
    def average_similarity(self) -> float:
        """Return the mean score of the candidates, 0 when there are none."""
        if not self.candidates:
            return 0.0
        return round(sum(c.score for c in self.candidates) / len(self.candidates), 3)

    @computed_field  # type: ignore[misc]
    @property
    def max_similarity(self) -> float:
        """Return the best candidate score."""
        return round(max((c.score for c in self.candidates), default=0.0), 3)

    @computed_field  # type: ignore[misc]
    @property
    def min_similarity(self) -> float:
        """Return the lowest candidate score."""
        return round(min((c.score for c in self.candidates), default=0.0), 3)

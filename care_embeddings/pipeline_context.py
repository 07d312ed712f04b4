"""Pipeline context for dependency injection.

This module provides a centralized container for all embedding pipeline
dependencies, following the dependency injection pattern for better
testability and separation of concerns.
"""

from dataclasses import dataclass

from care_embeddings.config.settings import EmbeddingSettings, get_settings
from care_embeddings.domain.embedding_provider import EmbeddingProvider
from care_embeddings.domain.entity_store import EntityRepository
from care_embeddings.domain.models import IndexingOptions
from care_embeddings.domain.services.change_detection_service import ChangeDetectionService
from care_embeddings.domain.services.embedding_service import UnifiedEmbeddingService
from care_embeddings.domain.services.search_service import SemanticSearchService
from care_embeddings.domain.services.text_preparation_service import TextPreparationService
from care_embeddings.domain.usage_ledger import SpendLedger
from care_embeddings.infrastructure.jsonl_entity_store import JsonlEntityRepository
from care_embeddings.infrastructure.jsonl_usage_ledger import JsonlSpendLedger
from care_embeddings.infrastructure.provider_factory import create_providers
from care_embeddings.orchestration.batch_orchestrator import BatchOrchestrator
from care_embeddings.orchestration.indexing_job_manager import IndexingJobManager
from care_embeddings.services.cost_service import BudgetMonitor, CostEstimator
from care_embeddings.services.embedding_cache import EmbeddingCache


@dataclass
class EmbeddingContext:
    """Container for all embedding pipeline dependencies.

    The cache lives here, owned by the context, so every service created
    from one context shares it and tests can build isolated contexts.

    Attributes:
        settings: Application settings loaded from environment
        providers: Provider clients keyed by name
        cache: Result cache, None when disabled
        ledger: Spend ledger
        budget_monitor: Budget gate reading the ledger
        embedding_service: Unified embedding entry point
        repository: Entity store
        orchestrator: Batch orchestrator
        job_manager: Indexing job manager
        search_service: Query-time semantic search
        change_detection: Change event evaluation
    """

    settings: EmbeddingSettings
    providers: dict[str, EmbeddingProvider]
    cache: EmbeddingCache | None
    ledger: SpendLedger
    budget_monitor: BudgetMonitor
    embedding_service: UnifiedEmbeddingService
    repository: EntityRepository
    orchestrator: BatchOrchestrator
    job_manager: IndexingJobManager
    search_service: SemanticSearchService
    change_detection: ChangeDetectionService

    @classmethod
    def from_settings(
        cls,
        settings: EmbeddingSettings | None = None,
        providers: dict[str, EmbeddingProvider] | None = None,
        repository: EntityRepository | None = None,
        ledger: SpendLedger | None = None,
    ) -> "EmbeddingContext":
        """Create the pipeline context from settings.

        Args:
            settings: Optional settings; if None, loads from environment
            providers: Override provider clients (tests)
            repository: Override the entity store
            ledger: Override the spend ledger

        Returns:
            Fully initialized EmbeddingContext

        Example:
            >>> ctx = EmbeddingContext.from_settings()
            >>> progress = asyncio.run(ctx.job_manager.run())
        """
        if settings is None:
            settings = get_settings()

        if providers is None:
            providers = create_providers(settings)
        if repository is None:
            repository = JsonlEntityRepository(settings.data_dir / "entities.jsonl")
        if ledger is None:
            ledger = JsonlSpendLedger(settings.data_dir / "embedding_usage.jsonl")

        cache = None
        if settings.embedding_cache:
            cache = EmbeddingCache(
                ttl_seconds=settings.embedding_cache_ttl,
                max_entries=settings.embedding_cache_max_entries,
            )

        budget_monitor = BudgetMonitor(
            ledger,
            daily_budget=settings.embedding_daily_budget,
            monthly_budget=settings.embedding_monthly_budget,
            warning_threshold=settings.embedding_warning_threshold,
        )

        embedding_service = UnifiedEmbeddingService(
            providers,
            primary=settings.resolve_primary(),
            fallback_order=settings.fallback_order,
            cache=cache,
            cost_estimator=CostEstimator(),
            budget_monitor=budget_monitor,
            ledger=ledger,
            default_dimensions=settings.embedding_dimensions,
            enable_fallback=settings.embedding_fallback,
        )

        orchestrator = BatchOrchestrator(embedding_service)
        job_manager = IndexingJobManager(
            repository,
            orchestrator,
            text_preparation=TextPreparationService(),
            default_options=cls.default_options(settings),
        )

        return cls(
            settings=settings,
            providers=providers,
            cache=cache,
            ledger=ledger,
            budget_monitor=budget_monitor,
            embedding_service=embedding_service,
            repository=repository,
            orchestrator=orchestrator,
            job_manager=job_manager,
            search_service=SemanticSearchService(embedding_service, repository),
            change_detection=ChangeDetectionService(),
        )

    @staticmethod
    def default_options(settings: EmbeddingSettings) -> IndexingOptions:
        """Build indexing options from settings."""
        return IndexingOptions(
            batch_size=settings.embedding_batch_size,
            max_concurrency=settings.embedding_max_concurrency,
            dimensions=settings.embedding_dimensions,
            enable_fallback=settings.embedding_fallback,
        )

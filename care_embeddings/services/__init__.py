"""Business logic services for the care embeddings pipeline.

Stateful helpers shared by the embedding service and the orchestrators:
result caching, cost and budget tracking, and batch planning.
"""

from care_embeddings.services.batch_planning_service import BatchPlan, BatchPlanningService
from care_embeddings.services.cost_service import BudgetMonitor, CostEstimator, InMemorySpendLedger
from care_embeddings.services.embedding_cache import EmbeddingCache

__all__ = [
    "BatchPlan",
    "BatchPlanningService",
    "BudgetMonitor",
    "CostEstimator",
    "EmbeddingCache",
    "InMemorySpendLedger",
]

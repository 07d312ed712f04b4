"""Query-time semantic search.

Responsible for embedding a user query and handing it to the store's
ranked entity search. When the query cannot be embedded the search still
runs, text-only. Similar-entity lookup reuses an entity's stored vector
and never calls a provider.
"""

import asyncio
import logging
from typing import Any

from care_embeddings.domain.entity_store import EntityRepository
from care_embeddings.domain.errors import EmbeddingError
from care_embeddings.domain.models import (
    EntitySearchRequest,
    SearchOutcome,
    SimilarEntitiesOutcome,
    TaskHint,
)
from care_embeddings.domain.services.embedding_service import UnifiedEmbeddingService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_SIMILARITY_THRESHOLD = 0.6
SIMILAR_THRESHOLD = 0.75
MAX_SIMILAR_LIMIT = 50


class SemanticSearchService:
    """Service for searching entities by meaning.

    Query embeddings skip the budget check: one short query is cheap and
    latency matters more than strictness here.
    """

    def __init__(self, embedding_service: UnifiedEmbeddingService, repository: EntityRepository):
        """Initialize search service.

        Args:
            embedding_service: Service used to embed queries
            repository: Store providing the ranked search
        """
        self._embedding_service = embedding_service
        self._repository = repository

    async def search(
        self,
        query: str,
        location: str | None = None,
        filters: dict[str, Any] | None = None,
        limit: int = DEFAULT_LIMIT,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> SearchOutcome:
        """Search entities for a free-text query.

        Args:
            query: User query
            location: City or state filter
            filters: Structured attribute filters
            limit: Maximum results
            similarity_threshold: Minimum cosine similarity for vector matches

        Returns:
            SearchOutcome; ``used_semantic_search`` is False when embedding failed
        """
        query_embedding = None
        embedding_error = None
        try:
            result = await self._embedding_service.embed(query, task=TaskHint.QUERY, check_budget=False)
            query_embedding = result.embedding
        except EmbeddingError as e:
            embedding_error = str(e)
            logger.warning(f"Query embedding failed, falling back to text search: {e}")

        request = EntitySearchRequest(
            query=query,
            query_embedding=query_embedding,
            location=location,
            filters=filters or {},
            limit=limit,
            similarity_threshold=similarity_threshold,
        )
        candidates = await asyncio.to_thread(self._repository.search_entities, request)
        return SearchOutcome(
            candidates=candidates,
            used_semantic_search=query_embedding is not None,
            embedding_error=embedding_error,
        )

    async def find_similar(
        self,
        entity_id: str,
        threshold: float = SIMILAR_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> SimilarEntitiesOutcome:
        """Find entities of the same type closest to an entity's stored embedding.

        Args:
            entity_id: Target entity
            threshold: Minimum cosine similarity, between 0 and 1
            limit: Maximum results, between 1 and 50

        Returns:
            SimilarEntitiesOutcome without the target itself; ``has_embedding``
            is False when the target has not been indexed yet

        Raises:
            ValueError: If threshold or limit is out of range
            KeyError: If the entity does not exist
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("Similarity threshold must be between 0 and 1")
        if not 1 <= limit <= MAX_SIMILAR_LIMIT:
            raise ValueError(f"Limit must be between 1 and {MAX_SIMILAR_LIMIT}")

        records = await asyncio.to_thread(self._repository.fetch_by_ids, [entity_id])
        if not records:
            raise KeyError(f"Entity '{entity_id}' not found")
        target = records[0]

        embedding = await asyncio.to_thread(self._repository.get_embedding, entity_id)
        if not embedding:
            logger.info(f"{entity_id} has no embedding yet; run indexing first")
            return SimilarEntitiesOutcome(
                target_id=entity_id,
                target_name=target.name,
                has_embedding=False,
                similarity_threshold=threshold,
                limit=limit,
            )

        # One extra slot since the target always matches itself
        request = EntitySearchRequest(
            query=target.name,
            query_embedding=embedding,
            filters={"entity_type": target.entity_type},
            limit=limit + 1,
            similarity_threshold=threshold,
        )
        candidates = await asyncio.to_thread(self._repository.search_entities, request)
        similar = [candidate for candidate in candidates if candidate.id != entity_id][:limit]
        logger.info(f"Found {len(similar)} entities similar to {target.name}")
        return SimilarEntitiesOutcome(
            target_id=entity_id,
            target_name=target.name,
            candidates=similar,
            similarity_threshold=threshold,
            limit=limit,
        )

"""Entity repository abstraction.

Decouples indexing and search from the store that holds hospitals and
doctors (the hosted relational database, a local JSONL file, etc.)
"""

from typing import Any, Protocol

from care_embeddings.domain.models import (
    EmbeddingStatus,
    EntityRecord,
    EntitySearchRequest,
    EntityType,
    SearchCandidate,
)


class EntityRepository(Protocol):
    """Protocol for entity storage operations used by the pipeline."""

    def fetch_missing_embeddings(self, entity_type: EntityType | None = None) -> list[EntityRecord]:
        """Return active entities that have no embedding yet."""
        ...

    def fetch_all(self, entity_type: EntityType | None = None) -> list[EntityRecord]:
        """Return every active entity."""
        ...

    def fetch_by_ids(self, entity_ids: list[str]) -> list[EntityRecord]:
        """Return the entities with the given IDs, in the given order, skipping unknown IDs."""
        ...

    def get_embedding(self, entity_id: str) -> list[float] | None:
        """Return the stored vector of one entity, None if it has none."""
        ...

    def update_embedding(self, entity_id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        """Store an entity's embedding and its generation metadata.

        Raises:
            Exception: If the write fails
        """
        ...

    def search_entities(self, request: EntitySearchRequest) -> list[SearchCandidate]:
        """Run the ranked search; a request without embedding falls back to text matching."""
        ...

    def embedding_status(self, entity_type: EntityType | None = None) -> EmbeddingStatus:
        """Count active entities with and without embeddings."""
        ...

    def reset_embeddings(self, entity_type: EntityType | None = None) -> int:
        """Clear stored embeddings, returning how many were cleared."""
        ...

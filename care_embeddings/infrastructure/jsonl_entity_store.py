"""JSONL file-based entity store implementation.

Stores hospitals and doctors, one JSON object per line, together with their
embeddings. This provides a simple, portable, and inspectable stand-in for
the hosted directory database.
"""

import logging
import threading
from pathlib import Path
from typing import Any

import jsonlines
from pydantic import BaseModel, Field, ValidationError

from care_embeddings.domain.models import (
    EmbeddingStatus,
    EntityRecord,
    EntitySearchRequest,
    EntityType,
    SearchCandidate,
)
from care_embeddings.utils.vector_utils import cosine_similarity

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("type", "city", "state", "description")


class StoredEntity(BaseModel):
    """One line of the entity file."""

    id: str
    name: str
    entity_type: EntityType = "hospital"
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    embedding: list[float] | None = None
    embedding_metadata: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> EntityRecord:
        """Convert to the domain record (without the vector)."""
        return EntityRecord(
            id=self.id,
            name=self.name,
            entity_type=self.entity_type,
            attributes=self.attributes,
            has_embedding=bool(self.embedding),
            is_active=self.is_active,
        )


class JsonlEntityRepository:
    """JSONL file-based implementation of EntityRepository.

    The whole file is rewritten atomically on every update, so it suits
    directories of a few thousand entities. All operations hold a lock
    because persistence runs in worker threads.
    """

    def __init__(self, entities_file: Path):
        """Initialize JSONL entity store.

        Args:
            entities_file: Path of the JSONL file; created on first write
        """
        self._file = Path(entities_file)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        """Return the backing file path."""
        return self._file

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_missing_embeddings(self, entity_type: EntityType | None = None) -> list[EntityRecord]:
        """Return active entities that have no embedding yet."""
        return [
            entity.to_record()
            for entity in self._active(entity_type)
            if not entity.embedding
        ]

    def fetch_all(self, entity_type: EntityType | None = None) -> list[EntityRecord]:
        """Return every active entity."""
        return [entity.to_record() for entity in self._active(entity_type)]

    def fetch_by_ids(self, entity_ids: list[str]) -> list[EntityRecord]:
        """Return entities in the requested order, skipping unknown IDs."""
        by_id = {entity.id: entity for entity in self._load()}
        missing = [entity_id for entity_id in entity_ids if entity_id not in by_id]
        if missing:
            logger.warning(f"Unknown entity IDs: {', '.join(missing)}")
        return [by_id[entity_id].to_record() for entity_id in entity_ids if entity_id in by_id]

    def get_embedding(self, entity_id: str) -> list[float] | None:
        """Return the stored vector of one entity."""
        for entity in self._load():
            if entity.id == entity_id:
                return entity.embedding
        return None

    def embedding_status(self, entity_type: EntityType | None = None) -> EmbeddingStatus:
        """Count active entities with and without embeddings."""
        entities = self._active(entity_type)
        with_embeddings = sum(1 for entity in entities if entity.embedding)
        return EmbeddingStatus(
            total=len(entities),
            with_embeddings=with_embeddings,
            without_embeddings=len(entities) - with_embeddings,
        )

    def search_entities(self, request: EntitySearchRequest) -> list[SearchCandidate]:
        """Rank entities by cosine similarity, or by term overlap without an embedding."""
        candidates = [
            entity
            for entity in self._active(request.filters.get("entity_type"))
            if self._matches_filters(entity, request)
        ]

        scored: list[tuple[float, StoredEntity]] = []
        if request.query_embedding is not None:
            width = len(request.query_embedding)
            for entity in candidates:
                if not entity.embedding or len(entity.embedding) != width:
                    continue
                score = cosine_similarity(request.query_embedding, entity.embedding)
                if score >= request.similarity_threshold:
                    scored.append((score, entity))
        else:
            terms = [term for term in request.query.lower().split() if term]
            for entity in candidates:
                haystack = " ".join(
                    [entity.name, *(str(entity.attributes.get(field, "")) for field in _TEXT_FIELDS)]
                ).lower()
                matched = sum(1 for term in terms if term in haystack)
                if matched:
                    scored.append((matched / len(terms), entity))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            SearchCandidate(
                id=entity.id,
                name=entity.name,
                entity_type=entity.entity_type,
                score=round(score, 4),
                attributes=entity.attributes,
            )
            for score, entity in scored[: request.limit]
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_entities(self, entities: list[StoredEntity]) -> None:
        """Insert or replace entities by ID."""
        with self._lock:
            by_id = {entity.id: entity for entity in self._load()}
            for entity in entities:
                by_id[entity.id] = entity
            self._write(list(by_id.values()))

    def update_embedding(self, entity_id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        """Store an entity's embedding and metadata.

        Raises:
            KeyError: If the entity does not exist
            OSError: If the file cannot be written
        """
        with self._lock:
            entities = self._load()
            for index, entity in enumerate(entities):
                if entity.id == entity_id:
                    entities[index] = entity.model_copy(
                        update={"embedding": list(embedding), "embedding_metadata": dict(metadata)}
                    )
                    break
            else:
                raise KeyError(f"Entity '{entity_id}' not found")
            self._write(entities)
        logger.debug(f"Stored {len(embedding)}-dim embedding for {entity_id}")

    def reset_embeddings(self, entity_type: EntityType | None = None) -> int:
        """Clear embeddings, returning how many were cleared."""
        with self._lock:
            entities = self._load()
            cleared = 0
            for index, entity in enumerate(entities):
                if entity.embedding and (entity_type is None or entity.entity_type == entity_type):
                    entities[index] = entity.model_copy(update={"embedding": None, "embedding_metadata": {}})
                    cleared += 1
            if cleared:
                self._write(entities)
        logger.info(f"Reset {cleared} embeddings")
        return cleared

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def _active(self, entity_type: EntityType | None) -> list[StoredEntity]:
        return [
            entity
            for entity in self._load()
            if entity.is_active and (entity_type is None or entity.entity_type == entity_type)
        ]

    @staticmethod
    def _matches_filters(entity: StoredEntity, request: EntitySearchRequest) -> bool:
        if request.location:
            location = request.location.lower()
            city = str(entity.attributes.get("city", "")).lower()
            state = str(entity.attributes.get("state", "")).lower()
            if location not in city and location not in state:
                return False
        for key, expected in request.filters.items():
            if key == "entity_type":
                continue
            if entity.attributes.get(key) != expected:
                return False
        return True

    def _load(self) -> list[StoredEntity]:
        """Load every entity, skipping lines that fail to parse."""
        with self._lock:
            if not self._file.exists():
                return []

            entities = []
            with jsonlines.open(self._file) as reader:
                while True:
                    try:
                        data = reader.read(skip_empty=True)
                    except EOFError:
                        break
                    except jsonlines.InvalidLineError as e:
                        logger.warning(f"Failed to parse line {e.lineno} in {self._file.name}: {e}")
                        continue
                    try:
                        entities.append(StoredEntity(**data))
                    except (TypeError, ValidationError) as e:
                        logger.warning(f"Invalid entity in {self._file.name}: {e}")
            return entities

    def _write(self, entities: list[StoredEntity]) -> None:
        """Write all entities (atomic write)."""
        self._file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._file.with_suffix(".tmp")
        with jsonlines.open(tmp_path, mode="w") as writer:
            writer.write_all(entity.model_dump(mode="json") for entity in entities)
        tmp_path.replace(self._file)

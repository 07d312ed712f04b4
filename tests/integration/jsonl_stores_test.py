"""Integration tests for the JSONL entity store and spend ledger."""

from datetime import UTC, datetime

import pytest

from care_embeddings.domain.models import EntitySearchRequest, UsageRecord
from care_embeddings.infrastructure.jsonl_entity_store import JsonlEntityRepository
from care_embeddings.infrastructure.jsonl_usage_ledger import JsonlSpendLedger
from tests.conftest import make_hospital


class TestJsonlEntityRepository:
    """Tests for the entity store."""

    def test_fetch_missing_excludes_inactive(self, entity_store):
        """Test discovery returns active entities without embeddings."""
        ids = [entity.id for entity in entity_store.fetch_missing_embeddings()]
        assert ids == ["h1", "h2"]

    def test_fetch_by_ids_preserves_order(self, entity_store):
        """Test explicit IDs come back in request order, unknown IDs skipped."""
        ids = [entity.id for entity in entity_store.fetch_by_ids(["h2", "nope", "h1"])]
        assert ids == ["h2", "h1"]

    def test_update_embedding_round_trip(self, entity_store):
        """Test a stored embedding survives reloading the file."""
        entity_store.update_embedding("h1", [0.1, 0.2], {"provider": "gemini"})

        reloaded = JsonlEntityRepository(entity_store.path)
        assert reloaded.get_embedding("h1") == [0.1, 0.2]
        assert [e.id for e in reloaded.fetch_missing_embeddings()] == ["h2"]
        assert reloaded.fetch_all()[0].has_embedding

    def test_update_unknown_entity_raises(self, entity_store):
        """Test updating a missing entity is an error."""
        with pytest.raises(KeyError):
            entity_store.update_embedding("missing", [0.1], {})

    def test_corrupt_lines_skipped(self, tmp_path):
        """Test unparseable lines are skipped rather than failing the load."""
        path = tmp_path / "entities.jsonl"
        store = JsonlEntityRepository(path)
        store.upsert_entities([make_hospital("h1", "Boston General")])
        with path.open("a") as f:
            f.write("{not json\n")
        store.upsert_entities([make_hospital("h2", "Cambridge Heart Center")])

        assert [entity.id for entity in store.fetch_all()] == ["h1", "h2"]

    def test_vector_search_ranks_by_similarity(self, entity_store):
        """Test vector search orders by cosine similarity above the threshold."""
        entity_store.update_embedding("h1", [1.0, 0.0], {})
        entity_store.update_embedding("h2", [0.8, 0.6], {})

        results = entity_store.search_entities(
            EntitySearchRequest(query="q", query_embedding=[1.0, 0.0], similarity_threshold=0.5)
        )

        assert [candidate.id for candidate in results] == ["h1", "h2"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.8)

    def test_vector_search_threshold_and_location(self, entity_store):
        """Test the threshold and location filter narrow the results."""
        entity_store.update_embedding("h1", [1.0, 0.0], {})
        entity_store.update_embedding("h2", [0.0, 1.0], {})

        below_threshold = entity_store.search_entities(
            EntitySearchRequest(query="q", query_embedding=[0.0, 1.0], location="Boston")
        )

        assert below_threshold == []

    def test_text_search_without_embedding(self, entity_store):
        """Test term overlap ranking when no query embedding is available."""
        results = entity_store.search_entities(EntitySearchRequest(query="heart cambridge"))

        assert [candidate.id for candidate in results] == ["h2"]
        assert results[0].score == 1.0

    def test_attribute_filters(self, entity_store):
        """Test structured filters require equal attribute values."""
        results = entity_store.search_entities(
            EntitySearchRequest(query="ma", filters={"type": "SPECIALTY"})
        )
        assert [candidate.id for candidate in results] == ["h2"]

    def test_reset_embeddings(self, entity_store):
        """Test reset clears stored vectors and reports the count."""
        entity_store.update_embedding("h1", [0.1], {})

        assert entity_store.reset_embeddings() == 1
        assert entity_store.embedding_status().with_embeddings == 0


class TestJsonlSpendLedger:
    """Tests for the append-only spend ledger."""

    def test_spend_accumulates_across_instances(self, tmp_path):
        """Test a new ledger on the same file sees earlier spend."""
        now = datetime(2026, 5, 10, 9, 0, tzinfo=UTC)
        path = tmp_path / "usage.jsonl"
        ledger = JsonlSpendLedger(path, now=lambda: now)
        ledger.record_usage(
            UsageRecord(provider="openai", model="m", tokens=100, cost=0.5, recorded_at=now)
        )
        ledger.record_usage(
            UsageRecord(
                provider="openai", model="m", tokens=100, cost=1.0, recorded_at=datetime(2026, 5, 1, tzinfo=UTC)
            )
        )

        spend = JsonlSpendLedger(path, now=lambda: now).current_spend()

        assert spend.daily == pytest.approx(0.5)
        assert spend.monthly == pytest.approx(1.5)

    def test_missing_file_is_zero_spend(self, tmp_path):
        """Test an absent ledger means nothing has been spent."""
        spend = JsonlSpendLedger(tmp_path / "none.jsonl").current_spend()
        assert spend.daily == 0.0
        assert spend.monthly == 0.0

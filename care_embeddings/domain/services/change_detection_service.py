"""Change detection for store change events.

Responsible for deciding whether a row change requires a new embedding.
Single Responsibility: inspect INSERT/UPDATE payloads, nothing else.
"""

from dataclasses import dataclass
from typing import Any, Literal

EMBEDDING_FIELDS = (
    "name",
    "description",
    "type",
    "city",
    "state",
    "trauma_level",
    "emergency_services",
)

ChangeAction = Literal["embed", "skip", "ignore"]


@dataclass
class ChangeDecision:
    """Whether a change event should trigger re-embedding.

    Attributes:
        action: 'embed' to regenerate, 'skip' for a valid event needing no
            work, 'ignore' for events this pipeline does not handle
        reason: Human-readable explanation
        entity_id: Affected entity, when known
        changed_fields: Embedding-relevant fields that differ
    """

    action: ChangeAction
    reason: str
    entity_id: str | None = None
    changed_fields: tuple[str, ...] = ()

    @property
    def should_embed(self) -> bool:
        """Return True when the entity must be re-embedded."""
        return self.action == "embed"


class ChangeDetectionService:
    """Evaluate database change events for the hospitals table."""

    def __init__(self, table: str = "hospitals", fields: tuple[str, ...] = EMBEDDING_FIELDS):
        self._table = table
        self._fields = fields

    def evaluate(
        self,
        event_type: str,
        record: dict[str, Any] | None,
        old_record: dict[str, Any] | None = None,
        table: str | None = None,
    ) -> ChangeDecision:
        """Decide whether a change event needs a new embedding.

        INSERT always embeds. UPDATE embeds when an embedding-relevant field
        changed or the row has no embedding yet. Inactive rows are skipped.

        Args:
            event_type: 'INSERT', 'UPDATE' or 'DELETE'
            record: Row after the change
            old_record: Row before the change (UPDATE only)
            table: Table the event came from, if known

        Returns:
            ChangeDecision

        Raises:
            ValueError: If an INSERT or UPDATE has no record ID
        """
        if table is not None and table != self._table:
            return ChangeDecision("ignore", f"Event not for {self._table} table")

        event_type = event_type.upper()
        if event_type not in ("INSERT", "UPDATE"):
            return ChangeDecision("ignore", f"Event type {event_type} not handled")

        if not record or not record.get("id"):
            raise ValueError("Change event has no record ID")
        entity_id = str(record["id"])

        if not record.get("is_active", True):
            return ChangeDecision("skip", "Entity is inactive", entity_id)

        if event_type == "INSERT":
            return ChangeDecision("embed", "New entity", entity_id)

        old_record = old_record or {}
        changed = tuple(field for field in self._fields if old_record.get(field) != record.get(field))
        if changed:
            return ChangeDecision("embed", f"Changed: {', '.join(changed)}", entity_id, changed)
        if not record.get("embedding"):
            return ChangeDecision("embed", "Entity has no embedding", entity_id)
        return ChangeDecision("skip", "No embedding-relevant changes", entity_id)

"""Spend ledger abstraction.

Decouples budget tracking from where usage records are kept (memory,
local JSONL, the directory's usage table).
"""

from typing import Protocol

from care_embeddings.domain.models import SpendSnapshot, UsageRecord


class SpendLedger(Protocol):
    """Protocol for reading and recording embedding spend."""

    def current_spend(self) -> SpendSnapshot:
        """Return spend accumulated in the current UTC day and month."""
        ...

    def record_usage(self, record: UsageRecord) -> None:
        """Append one billable generation.

        Raises:
            Exception: If the record cannot be stored
        """
        ...

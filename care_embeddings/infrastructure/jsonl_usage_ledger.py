"""Append-only JSONL spend ledger."""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import jsonlines
from pydantic import ValidationError

from care_embeddings.domain.models import SpendSnapshot, UsageRecord
from care_embeddings.services.cost_service import spend_since

logger = logging.getLogger(__name__)


class JsonlSpendLedger:
    """SpendLedger that appends one usage record per line.

    Spend is recomputed from the file on every read, so several processes
    appending to the same file see each other's spend.
    """

    def __init__(self, ledger_file: Path, now: Callable[[], datetime] = lambda: datetime.now(UTC)):
        """Initialize the ledger.

        Args:
            ledger_file: JSONL file to append to; created on first record
            now: Clock returning an aware datetime, injectable for tests
        """
        self._file = Path(ledger_file)
        self._now = now
        self._lock = threading.Lock()

    def record_usage(self, record: UsageRecord) -> None:
        """Append one billable generation."""
        with self._lock:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            with jsonlines.open(self._file, mode="a") as writer:
                writer.write(record.model_dump(mode="json"))

    def current_spend(self) -> SpendSnapshot:
        """Return spend accumulated in the current UTC day and month."""
        return spend_since(self.records(), self._now())

    def records(self) -> list[UsageRecord]:
        """Read every record, skipping lines that fail to parse."""
        with self._lock:
            if not self._file.exists():
                return []
            records = []
            with jsonlines.open(self._file) as reader:
                for data in reader.iter(type=dict, skip_invalid=True, skip_empty=True):
                    try:
                        records.append(UsageRecord(**data))
                    except ValidationError as e:
                        logger.warning(f"Invalid usage record in {self._file.name}: {e}")
            return records

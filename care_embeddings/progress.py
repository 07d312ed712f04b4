"""Progress tracking abstraction for indexing jobs.

This module provides a clean separation of concerns for progress tracking,
allowing the pipeline to report progress without coupling to specific
progress bar implementations.
"""

import logging
from typing import Any, Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)

from care_embeddings.domain.models import IndexingProgress

logger = logging.getLogger(__name__)


class ProgressTracker(Protocol):
    """Protocol for progress tracking implementations.

    ``update`` has the signature of a batch orchestrator observer, so a
    tracker can be passed straight to an indexing job.
    """

    def start_stage(self, stage: str, description: str) -> None:
        """Start a new stage (discover, index, etc.)."""
        ...

    def end_stage(self, stage: str) -> None:
        """End the current stage."""
        ...

    def update(self, progress: IndexingProgress) -> None:
        """Receive a progress snapshot."""
        ...

    def log_warning(self, message: str) -> None:
        """Log a warning message."""
        ...

    def log_error(self, entity_id: str, error: str) -> None:
        """Log an error for an entity."""
        ...

    def show_summary(self, summary: dict[str, Any]) -> None:
        """Display final summary statistics."""
        ...


class NoOpProgressTracker:
    """Progress tracker that does nothing.

    Useful for testing or when progress tracking is not desired.
    """

    def start_stage(self, stage: str, description: str) -> None:
        """Start a new stage (no-op)."""
        pass

    def end_stage(self, stage: str) -> None:
        """End the current stage (no-op)."""
        pass

    def update(self, progress: IndexingProgress) -> None:
        """Receive a progress snapshot (no-op)."""
        pass

    def log_warning(self, message: str) -> None:
        """Log warning message (no-op)."""
        pass

    def log_error(self, entity_id: str, error: str) -> None:
        """Log error message (no-op)."""
        pass

    def show_summary(self, summary: dict[str, Any]) -> None:
        """Show processing summary (no-op)."""
        pass


class RichProgressTracker:
    """Progress tracker using Rich progress bars."""

    def __init__(self, console: Console | None = None):
        """Initialize the Rich progress tracker."""
        self.console = console or Console()
        self._progress: Progress | None = None
        self._task_id: Any | None = None
        self._reported_errors = 0
        self.current_stage: str | None = None

    def start_stage(self, stage: str, description: str) -> None:
        """Start a new stage."""
        self.current_stage = stage
        self.console.print(f"\n[bold cyan]═══ {description} ═══[/bold cyan]")

    def end_stage(self, stage: str) -> None:
        """End the current stage and stop any live progress bar."""
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task_id = None
        if stage == self.current_stage:
            self.current_stage = None

    def update(self, progress: IndexingProgress) -> None:
        """Render a progress snapshot, printing errors not seen before."""
        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(bar_width=40),
                MofNCompleteColumn(),
                TimeRemainingColumn(),
                console=self.console,
                transient=False,
            )
            self._progress.start()
            self._task_id = self._progress.add_task("Embedding entities", total=progress.total)

        self._progress.update(
            self._task_id,
            completed=progress.processed,
            total=progress.total,
            description=f"Batch {progress.current_batch}/{progress.total_batches}",
        )
        for error in progress.errors[self._reported_errors :]:
            self.log_error(error.entity_id, f"{error.stage}: {error.error}")
        self._reported_errors = len(progress.errors)

    def log_warning(self, message: str) -> None:
        """Log a warning message."""
        self.console.print(f"[yellow]⚠ {message}[/yellow]")
        logger.warning(message)

    def log_error(self, entity_id: str, error: str) -> None:
        """Log an error for an entity."""
        self.console.print(f"[red]✗ {entity_id}: {error}[/red]")
        logger.debug(f"Failed to index {entity_id}: {error}")

    def show_summary(self, summary: dict[str, Any]) -> None:
        """Display final summary statistics."""
        self.console.print("\n[bold cyan]═══ Summary ═══[/bold cyan]")
        self.console.print(f"[green]✓[/green] Successful: {summary.get('successful', 0)} entities")
        self.console.print(f"[red]✗[/red] Failed: {summary.get('failed', 0)} entities")
        if summary.get("cached", 0) > 0:
            self.console.print(f"[blue]↺[/blue] From cache: {summary['cached']} entities")
        if summary.get("cancelled"):
            self.console.print("[yellow]Job was cancelled[/yellow]")

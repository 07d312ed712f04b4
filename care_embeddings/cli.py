"""Command line interface for the care directory embedding pipeline.

Usage:
    care-embeddings index [--force]
    care-embeddings search "cardiac surgery" --location Boston
"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from care_embeddings.config.settings import EmbeddingSettings, env_template
from care_embeddings.domain.errors import EmbeddingError
from care_embeddings.domain.models import IndexingOptions, TaskHint
from care_embeddings.pipeline_context import EmbeddingContext
from care_embeddings.progress import NoOpProgressTracker, ProgressTracker, RichProgressTracker

app = typer.Typer(
    help="Care Embeddings - embedding generation and semantic search for the care directory",
    no_args_is_help=True,
)
console = Console()

logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    """Embedding pipeline for hospitals and doctors."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_settings(**overrides) -> EmbeddingSettings:
    try:
        return EmbeddingSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        console.print("[red]Configuration Error:[/red]")
        for error in e.errors():
            field = " → ".join(str(x) for x in error["loc"]) or "settings"
            console.print(f"  {field}: {error['msg']}")
        console.print(
            "\n[yellow]Tip:[/yellow] Set GEMINI_API_KEY or OPENAI_API_KEY in .env file or environment "
            "(see 'care-embeddings config-check --template')"
        )
        raise typer.Exit(1) from e


def _print_error(e: Exception) -> None:
    console.print(f"[red]Error: {e}[/red]")


@app.command()
def index(
    force: bool = typer.Option(False, "--force", "-f", help="Regenerate every active entity"),
    entity_type: str = typer.Option(None, "--entity-type", "-t", help="'hospital' or 'doctor'"),
    batch_size: int = typer.Option(None, "--batch-size", "-b", help="Base batch size (1-100)"),
    max_concurrency: int = typer.Option(None, "--max-concurrency", "-c", help="Concurrent calls (1-10)"),
    dimensions: int = typer.Option(None, "--dimensions", "-d", help="Embedding dimensions"),
    provider: str = typer.Option(None, "--provider", "-p", help="Provider override"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only the final counts"),
    data_dir: str = typer.Option(None, help="Data directory"),
):  # pylint: disable=too-many-arguments
    """Generate embeddings for entities that need them.

    Examples:
        # Embed entities without an embedding
        care-embeddings index

        # Regenerate all hospitals with OpenAI
        care-embeddings index --force --entity-type hospital --provider openai
    """
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        overrides = {
            "force_regenerate": force,
            "entity_type": entity_type,
            "batch_size": batch_size,
            "max_concurrency": max_concurrency,
            "dimensions": dimensions,
            "provider": provider,
        }
        options = IndexingOptions.model_validate(
            {
                **EmbeddingContext.default_options(settings).model_dump(),
                **{k: v for k, v in overrides.items() if v is not None},
            }
        )

        tracker: ProgressTracker = NoOpProgressTracker() if quiet else RichProgressTracker(console=console)
        tracker.start_stage("index", "Indexing entities")
        progress = asyncio.run(ctx.job_manager.run(options, observer=tracker.update))
        tracker.end_stage("index")
        tracker.show_summary(progress.model_dump())
        if quiet:
            console.print(f"{progress.successful}/{progress.total} indexed, {progress.failed} failed")
    except (EmbeddingError, ValidationError) as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if progress.failed > 0:
        raise typer.Exit(1)


@app.command()
def reindex(
    entity_ids: list[str] = typer.Argument(..., help="IDs of entities to regenerate"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Regenerate embeddings for specific entities."""
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        tracker = RichProgressTracker(console=console)
        tracker.start_stage("reindex", f"Reindexing {len(entity_ids)} entities")
        progress = asyncio.run(ctx.job_manager.reindex(entity_ids, observer=tracker.update))
        tracker.end_stage("reindex")
        tracker.show_summary(progress.model_dump())
    except EmbeddingError as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if progress.failed > 0:
        raise typer.Exit(1)


@app.command()
def status(
    entity_type: str = typer.Option(None, "--entity-type", "-t", help="'hospital' or 'doctor'"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Show embedding coverage and provider configuration."""
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        coverage = ctx.job_manager.embedding_status(entity_type)
    except Exception as e:
        _print_error(e)
        raise typer.Exit(1) from e

    console.print("[bold]Embedding Status[/bold]")
    console.print(f"  Total: {coverage.total} entities")
    console.print(f"  With embeddings: {coverage.with_embeddings}")
    console.print(f"  Without embeddings: {coverage.without_embeddings}")
    console.print(f"  Coverage: {coverage.coverage}%")

    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Dimensions")
    table.add_column("Configured")
    primary = settings.resolve_primary()
    for config in settings.provider_configs():
        label = f"{config.name} (primary)" if config.name == primary else config.name
        table.add_row(
            label,
            config.model,
            ", ".join(str(d) for d in config.supported_dimensions),
            "[green]yes[/green]" if config.has_credentials else "[red]no[/red]",
        )
    console.print(table)


@app.command()
def embed(
    text: str = typer.Argument(..., help="Text to embed"),
    provider: str = typer.Option(None, "--provider", "-p", help="Provider override"),
    dimensions: int = typer.Option(None, "--dimensions", "-d", help="Embedding dimensions"),
    task: TaskHint = typer.Option(TaskHint.DOCUMENT, "--task", help="Intended use of the vector"),
):
    """Embed a single text and print a summary of the result."""
    settings = _load_settings()

    try:
        ctx = EmbeddingContext.from_settings(settings)
        result = asyncio.run(
            ctx.embedding_service.embed(text, provider=provider, dimensions=dimensions, task=task)
        )
    except EmbeddingError as e:
        _print_error(e)
        raise typer.Exit(1) from e

    console.print(f"Provider: {result.provider}{' (fallback)' if result.fallback_used else ''}")
    console.print(f"Model: {result.model}")
    console.print(f"Dimensions: {result.dimensions} ({result.dimension_adjustment})")
    estimated = " (estimated)" if result.usage.estimated else ""
    console.print(f"Tokens: {result.usage.total_tokens}{estimated}")
    console.print(f"Cost: ${result.estimated_cost:.6f}")
    console.print(f"Time: {result.generation_time_ms:.0f} ms")
    preview = ", ".join(f"{value:.4f}" for value in result.embedding[:5])
    console.print(f"Vector: [{preview}, ...]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    location: str = typer.Option(None, "--location", "-l", help="City or state"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results"),
    threshold: float = typer.Option(0.6, "--threshold", help="Minimum similarity"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Search entities by meaning."""
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        outcome = asyncio.run(
            ctx.search_service.search(query, location=location, limit=limit, similarity_threshold=threshold)
        )
    except Exception as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if not outcome.used_semantic_search:
        console.print(f"[yellow]Semantic search unavailable ({outcome.embedding_error}), text match only[/yellow]")

    if not outcome.candidates:
        console.print("No results")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", justify="right")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Location")
    for candidate in outcome.candidates:
        city = candidate.attributes.get("city", "")
        state = candidate.attributes.get("state", "")
        table.add_row(
            f"{candidate.score:.3f}",
            candidate.name,
            candidate.entity_type,
            ", ".join(part for part in (city, state) if part),
        )
    console.print(table)


@app.command()
def similar(
    entity_id: str = typer.Argument(..., help="Entity to compare against"),
    threshold: float = typer.Option(0.75, "--threshold", help="Minimum similarity (0-1)"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results (1-50)"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Find entities similar to an indexed entity."""
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        outcome = asyncio.run(ctx.search_service.find_similar(entity_id, threshold=threshold, limit=limit))
    except (KeyError, ValueError) as e:
        console.print(f"[red]✗ {e.args[0] if e.args else e}[/red]")
        raise typer.Exit(1) from e
    except Exception as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if not outcome.has_embedding:
        console.print(
            f"[yellow]{outcome.target_name} does not have an embedding yet. "
            "Run 'care-embeddings index' first.[/yellow]"
        )
        return

    if not outcome.candidates:
        console.print(f"No entities above {threshold:.2f} similarity to {outcome.target_name}")
        return

    table = Table(title=f"Similar to {outcome.target_name}")
    table.add_column("Score", justify="right")
    table.add_column("Name")
    table.add_column("Location")
    for candidate in outcome.candidates:
        city = candidate.attributes.get("city", "")
        state = candidate.attributes.get("state", "")
        table.add_row(f"{candidate.score:.3f}", candidate.name, ", ".join(p for p in (city, state) if p))
    console.print(table)
    console.print(
        f"Similarity: avg {outcome.average_similarity:.3f}, "
        f"max {outcome.max_similarity:.3f}, min {outcome.min_similarity:.3f}"
    )


@app.command()
def budget(data_dir: str = typer.Option(None, help="Data directory")):
    """Show current spend against the daily and monthly budgets."""
    settings = _load_settings(data_dir=data_dir)

    try:
        ctx = EmbeddingContext.from_settings(settings)
        state = ctx.budget_monitor.budget_state()
    except Exception as e:
        _print_error(e)
        raise typer.Exit(1) from e

    console.print("[bold]Embedding Budget[/bold]")
    console.print(
        f"  Daily: ${state.daily_spend:.4f} / ${state.daily_budget:.2f} ({state.daily_utilization:.0%})"
    )
    console.print(
        f"  Monthly: ${state.monthly_spend:.4f} / ${state.monthly_budget:.2f} "
        f"({state.monthly_utilization:.0%})"
    )
    if max(state.daily_utilization, state.monthly_utilization) >= state.warning_threshold:
        console.print("[yellow]⚠ Spend is above the warning threshold[/yellow]")


@app.command()
def reset(
    entity_type: str = typer.Option(None, "--entity-type", "-t", help="'hospital' or 'doctor'"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Clear stored embeddings so the next index run regenerates them."""
    settings = _load_settings(data_dir=data_dir)

    if not yes and not typer.confirm("Clear all stored embeddings?"):
        raise typer.Abort()

    try:
        ctx = EmbeddingContext.from_settings(settings)
        cleared = ctx.job_manager.reset_embeddings(entity_type)
    except Exception as e:
        _print_error(e)
        raise typer.Exit(1) from e

    console.print(f"[green]✓[/green] Cleared {cleared} embeddings")


@app.command("on-change")
def on_change(
    payload_file: Path = typer.Argument(..., help="JSON change event (type, table, record, old_record)"),
    data_dir: str = typer.Option(None, help="Data directory"),
):
    """Re-embed an entity if a database change event requires it."""
    settings = _load_settings(data_dir=data_dir)

    try:
        payload = json.loads(payload_file.read_text())
        ctx = EmbeddingContext.from_settings(settings)
        decision = ctx.change_detection.evaluate(
            payload.get("type", ""),
            payload.get("record"),
            payload.get("old_record"),
            table=payload.get("table"),
        )
    except (OSError, ValueError) as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if not decision.should_embed:
        console.print(f"{decision.action}: {decision.reason}")
        return

    try:
        progress = asyncio.run(ctx.job_manager.reindex([decision.entity_id]))
    except EmbeddingError as e:
        _print_error(e)
        raise typer.Exit(1) from e

    if progress.failed:
        console.print(f"[red]✗ Failed to embed {decision.entity_id}: {progress.errors[0].error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Embedded {decision.entity_id} ({decision.reason})")


@app.command("config-check")
def config_check(
    template: bool = typer.Option(False, "--template", help="Print a .env template and exit"),
    test_connection: bool = typer.Option(
        False, "--test-connection", help="Make a test request to each configured provider"
    ),
):
    """Validate provider configuration."""
    if template:
        console.print(env_template(), markup=False, highlight=False)
        return

    settings = _load_settings()
    report = settings.validate_providers()

    for warning in report.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    console.print(f"Primary provider: {settings.resolve_primary()}")
    console.print(f"Fallback provider: {settings.resolve_fallback() or 'none'}")

    if test_connection:
        ctx = EmbeddingContext.from_settings(settings)
        failed = False
        for name, provider in ctx.providers.items():
            if not provider.is_configured():
                continue
            ok = asyncio.run(provider.check_connection())
            failed = failed or not ok
            marker = "[green]✓[/green]" if ok else "[red]✗[/red]"
            console.print(f"{marker} {name} ({provider.get_model_name()})")
        if failed:
            raise typer.Exit(1)

    console.print("[green]✓ Configuration valid[/green]")

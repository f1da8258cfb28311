"""BookQuest CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from bookquest.observability import close_file_logging, configure_logging, get_logger, get_logs_dir
from bookquest.pipeline.config import DEFAULT_TARGET_NODES

# Load environment variables from .env file
load_dotenv()

if TYPE_CHECKING:
    from bookquest.cache import PipelineCache
    from bookquest.pipeline import BookQuestConfig, ProgressFn, ProviderConfig
    from bookquest.providers.base import Generator
    from bookquest.validation import CoverageStats, ValidationReport

app = typer.Typer(
    name="bq",
    help="BookQuest: turn a book into a branching text adventure.",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Inspect or clear the resumable stage cache.", no_args_is_help=True)
app.add_typer(cache_app, name="cache")
console = Console()

STAGE_LABELS = {
    "storySummary": "Summarizing book",
    "worldBuilding": "Building world",
    "storyGraph": "Designing story graph",
    "nodeContent": "Writing node content",
    "enrichment": "Enriching interactions",
    "validation": "Validating game",
}

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to <output dir>/logs/debug.jsonl.",
        ),
    ] = False,
) -> None:
    """BookQuest: turn a book into a branching text adventure."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log

    # Console logging only; file logging is configured once the output dir is known
    configure_logging(verbosity=verbose)


def _configure_file_logging(output_dir: Path) -> None:
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_dir=output_dir / "logs")
        atexit.register(close_file_logging)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


def _load_settings(config_path: Path | None) -> BookQuestConfig:
    from bookquest.pipeline.config import CONFIG_FILE_NAME, ConfigError, load_config

    try:
        return load_config(config_path or Path(CONFIG_FILE_NAME))
    except ConfigError as e:
        raise _fail(str(e)) from None


def _build_generator(provider: ProviderConfig) -> Generator:
    """Create the LangChain-backed generator for *provider*."""
    from bookquest.providers.client import LangChainGenerator
    from bookquest.providers.factory import create_chat_model

    chat_model = create_chat_model(provider.name, provider.model, temperature=provider.temperature)
    return LangChainGenerator(chat_model, provider.name)


def _progress_callback(progress: Progress) -> ProgressFn:
    """Map ``(stage, percent)`` updates onto one progress row per stage."""
    rows: dict[str, int] = {}

    def on_progress(stage: str, percent: int) -> None:
        if stage not in rows:
            rows[stage] = progress.add_task(STAGE_LABELS.get(stage, stage), total=100)
        progress.update(rows[stage], completed=percent)

    return on_progress


def _print_stats(stats: CoverageStats) -> None:
    table = Table(title="Game Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("Nodes", str(stats.total_nodes))
    table.add_row("Interactions", str(stats.total_interactions))
    table.add_row("Avg interactions/node", f"{stats.avg_interactions_per_node:.1f}")
    table.add_row("Choice nodes", str(stats.choice_nodes))
    table.add_row("Ending nodes", str(stats.ending_nodes))
    console.print()
    console.print(table)

    missing = (
        ("interaction", stats.missing_interaction_types),
        ("condition", stats.missing_condition_types),
        ("effect", stats.missing_effect_types),
    )
    for kind, names in missing:
        if names:
            console.print(f"  [yellow]Missing {kind} types:[/yellow] {', '.join(names)}")


def _print_report(report: ValidationReport) -> None:
    icon = "[green]✓[/green]" if report.is_valid else "[red]✗[/red]"
    console.print(f"{icon} Validation: {report.summary}")
    for error in report.errors:
        console.print(f"  [red]•[/red] {escape(error)}")
    if _verbose:
        for warning in report.warnings:
            console.print(f"  [yellow]•[/yellow] {escape(warning)}")
        for fix in report.fixes:
            console.print(f"  [dim]• {escape(fix)}[/dim]")


@app.command()
def generate(
    book_file: Annotated[Path, typer.Argument(help="Segmented book (JSON or YAML).")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Game file to write (default: <book>.adventure.json)."),
    ] = None,
    nodes: Annotated[
        int | None,
        typer.Option("--nodes", "-n", min=5, help="Target number of story nodes (default: 44)."),
    ] = None,
    parallel: Annotated[
        int | None,
        typer.Option("--parallel", "-p", min=1, help="Concurrent generation calls (default: 3)."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Stop after the story graph and write skeleton nodes."),
    ] = False,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Do not read or write the stage cache."),
    ] = False,
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="LLM provider as provider[/model], e.g. openai/gpt-5-mini."),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", help="Config file (default: ./bookquest.yaml)."),
    ] = None,
) -> None:
    """Generate a text adventure from a book."""
    from bookquest.artifacts import (
        ArtifactNotFoundError,
        ArtifactParseError,
        ArtifactWriteError,
        default_output_path,
        load_book,
        write_game_data,
    )
    from bookquest.cache import CacheError, PipelineCache
    from bookquest.pipeline import PipelineConfig, PipelineError, PipelineOrchestrator, ProviderConfig
    from bookquest.providers.base import ProviderError

    log = get_logger(__name__)
    settings = _load_settings(config)
    if provider:
        settings.provider = ProviderConfig.from_spec(provider, settings.provider.temperature)

    try:
        book = load_book(book_file)
    except (ArtifactNotFoundError, ArtifactParseError) as e:
        raise _fail(str(e)) from None

    output_path = output or default_output_path(book_file)
    _configure_file_logging(output_path.parent)

    pipeline_config = PipelineConfig(
        target_node_count=nodes or settings.pipeline.target_node_count,
        concurrency=parallel or settings.pipeline.concurrency,
        dry_run=dry_run or settings.pipeline.dry_run,
        verbose=_verbose > 0 or settings.pipeline.verbose,
        use_cache=settings.pipeline.use_cache and not no_cache,
        language=settings.pipeline.language,
    )

    cache: PipelineCache | None = None
    if pipeline_config.use_cache:
        try:
            cache = PipelineCache.open(output_path.parent, book, pipeline_config.target_node_count)
        except CacheError as e:
            raise _fail(f"{e}\n  Run: bq cache clear {book_file}") from None
        console.print(f"[dim]Cache: {cache.location} ({cache.summarize()})[/dim]")

    console.print(
        f"Generating [bold]{book.title}[/bold] with {settings.provider.spec} "
        f"({pipeline_config.target_node_count} nodes, {pipeline_config.concurrency} parallel)"
    )
    log.info("generate_start", book=str(book_file), output=str(output_path), provider=settings.provider.spec)

    try:
        generator = _build_generator(settings.provider)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=False,
        ) as progress:
            orchestrator = PipelineOrchestrator(
                book,
                pipeline_config,
                generator,
                cache=cache,
                on_progress=_progress_callback(progress),
            )
            game = asyncio.run(orchestrator.run())
        write_game_data(game, output_path)
    except (ProviderError, PipelineError, CacheError, ArtifactWriteError) as e:
        log.error("generate_failed", error=str(e))
        console.print()
        console.print(f"[red]✗[/red] Generation failed: {escape(str(e))}")
        if isinstance(e, CacheError):
            console.print(f"  Run: [cyan]bq cache clear {book_file}[/cyan]")
        raise typer.Exit(1) from None

    console.print()
    if pipeline_config.dry_run:
        console.print(f"[green]✓[/green] Dry run complete: {len(game.nodes)} skeleton nodes")
    else:
        if orchestrator.report is not None:
            _print_stats(orchestrator.report.stats)
            _print_report(orchestrator.report)
        if orchestrator.enrichment is not None:
            enrichment = orchestrator.enrichment
            console.print(
                f"  Enrichment: {enrichment.loops_added} loops, "
                f"{enrichment.patterns_injected} patterns, {enrichment.interactions_padded} padded"
            )
    console.print(f"  Output: [cyan]{output_path}[/cyan]")
    logs_dir = get_logs_dir()
    if logs_dir is not None:
        console.print(f"  Logs: [dim]{logs_dir}[/dim]")


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


def _open_cache(book_file: Path, nodes: int, output: Path | None) -> PipelineCache:
    from bookquest.artifacts import ArtifactNotFoundError, ArtifactParseError, default_output_path, load_book
    from bookquest.cache import CacheError, PipelineCache

    try:
        book = load_book(book_file)
        output_path = output or default_output_path(book_file)
        return PipelineCache.open(output_path.parent, book, nodes)
    except (ArtifactNotFoundError, ArtifactParseError, CacheError) as e:
        raise _fail(str(e)) from None


NodesOption = Annotated[int, typer.Option("--nodes", "-n", min=5, help="Target node count of the run.")]
OutputOption = Annotated[
    Path | None,
    typer.Option("--output", "-o", help="Game file of the run (default: <book>.adventure.json)."),
]


@cache_app.command("status")
def cache_status(
    book_file: Annotated[Path, typer.Argument(help="Book the cache belongs to.")],
    nodes: NodesOption = DEFAULT_TARGET_NODES,
    output: OutputOption = None,
) -> None:
    """Show which stages are cached for a book."""
    from bookquest.cache import STAGE_ORDER

    cache = _open_cache(book_file, nodes, output)

    table = Table(title=f"Cache: {cache.location}")
    table.add_column("Stage", style="cyan")
    table.add_column("Entries", style="bold")
    table.add_column("Completed", style="dim")
    for stage in STAGE_ORDER:
        if stage.is_partitioned:
            keys = cache.partition_keys(stage)
            stamps = [cache.completed_at(stage, key) or "" for key in keys]
            table.add_row(stage.value, str(len(keys)) if keys else "-", max(stamps) if stamps else "-")
        else:
            completed = cache.completed_at(stage)
            table.add_row(stage.value, "1" if completed else "-", completed or "-")

    console.print()
    console.print(table)
    console.print(cache.summarize())


@cache_app.command("clear")
def cache_clear(
    book_file: Annotated[Path, typer.Argument(help="Book the cache belongs to.")],
    nodes: NodesOption = DEFAULT_TARGET_NODES,
    output: OutputOption = None,
) -> None:
    """Delete every cached stage for a book."""
    cache = _open_cache(book_file, nodes, output)
    cache.clear()
    console.print(f"[green]✓[/green] Cleared cache at {cache.location}")


# ---------------------------------------------------------------------------
# validate / version
# ---------------------------------------------------------------------------


@app.command()
def validate(
    game_file: Annotated[Path, typer.Argument(help="Generated game file.")],
    graph: Annotated[
        Path | None,
        typer.Option("--graph", help="Story graph whose edges the game must keep."),
    ] = None,
    fix: Annotated[bool, typer.Option("--fix", help="Write the repaired game back.")] = False,
) -> None:
    """Re-run validation and repair on an existing game."""
    from bookquest.artifacts import (
        ArtifactNotFoundError,
        ArtifactParseError,
        ArtifactWriteError,
        load_game_data,
        load_story_graph,
        write_game_data,
    )
    from bookquest.validation import validate_and_fix

    try:
        game = load_game_data(game_file)
        story_graph = load_story_graph(graph) if graph else None
    except (ArtifactNotFoundError, ArtifactParseError) as e:
        raise _fail(str(e)) from None

    report = validate_and_fix(game, story_graph)
    _print_stats(report.stats)
    _print_report(report)

    if fix and report.fixes:
        try:
            write_game_data(game, game_file)
        except ArtifactWriteError as e:
            raise _fail(str(e)) from None
        console.print(f"  Wrote {len(report.fixes)} fixes to [cyan]{game_file}[/cyan]")


@app.command()
def version() -> None:
    """Show version information."""
    from bookquest import __version__

    console.print(f"BookQuest v{__version__}")

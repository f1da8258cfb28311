"""Pipeline orchestrator: runs the six stages with caching and progress.

Summary, World, Graph and Content are cached; a stage whose artifact is
already in the cache is loaded instead of generated. Enrichment and
Validation are cheap and deterministic and run on every pass.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from bookquest.cache import CacheCorruptionError, PipelineCache, StageId
from bookquest.graph.resolver import find_unresolved, resolve_connections
from bookquest.models.content import StoryNode
from bookquest.models.graph import ActStructure, ChapterGraph, ChapterStructure, StoryGraph
from bookquest.models.summary import StorySummary
from bookquest.models.world import WorldData
from bookquest.observability.logging import get_logger
from bookquest.pipeline.batching import run_bounded
from bookquest.pipeline.size import get_size_profile
from bookquest.pipeline.stages.base import StageError
from bookquest.pipeline.stages.content import (
    assemble_game_data,
    batch_key,
    build_global_context,
    build_world_context,
    content_task,
    create_batches,
    generate_batch,
    skeleton_nodes,
)
from bookquest.pipeline.stages.enrichment import enrich_game_data
from bookquest.pipeline.stages.graph import (
    generate_acts,
    generate_chapters,
    generate_flat_graph,
    generate_scenes,
)
from bookquest.pipeline.stages.summary import summarize_book
from bookquest.pipeline.stages.world import build_world
from bookquest.validation import validate_and_fix

if TYPE_CHECKING:
    from bookquest.models.book import Book
    from bookquest.models.content import GameData
    from bookquest.models.graph import ActDescriptor, ChapterDescriptor, GraphNode
    from bookquest.pipeline.config import PipelineConfig
    from bookquest.pipeline.stages.enrichment import EnrichmentReport
    from bookquest.providers.base import Generator, TaskSpec
    from bookquest.validation import ValidationReport

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# (stage name, percent complete) -> None
ProgressFn = Callable[[str, int], None]

STAGE_SUMMARY = "storySummary"
STAGE_WORLD = "worldBuilding"
STAGE_GRAPH = "storyGraph"
STAGE_CONTENT = "nodeContent"
STAGE_ENRICHMENT = "enrichment"
STAGE_VALIDATION = "validation"
PROGRESS_STAGES = (
    STAGE_SUMMARY,
    STAGE_WORLD,
    STAGE_GRAPH,
    STAGE_CONTENT,
    STAGE_ENRICHMENT,
    STAGE_VALIDATION,
)


class PipelineError(Exception):
    """Raised when pipeline execution fails."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"Pipeline error in stage '{stage}': {message}")


@dataclass
class StageResult:
    """Outcome of one stage in a run."""

    stage: str
    cached: bool = False
    generated: int = 0
    duration_seconds: float = 0.0


@dataclass
class _StageTimer:
    result: StageResult
    start: float = field(default_factory=time.perf_counter)


class PipelineOrchestrator:
    """Run the generation pipeline for one book.

    Attributes:
        profile: Size profile derived from the target node count.
        cache: Stage cache; in-memory when none is supplied.
        results: One entry per stage run so far.
        enrichment: Report from the last enrichment pass.
        report: Validation report from the last run.
    """

    def __init__(
        self,
        book: Book,
        config: PipelineConfig,
        generator: Generator,
        *,
        cache: PipelineCache | None = None,
        on_progress: ProgressFn | None = None,
        summary: StorySummary | None = None,
    ) -> None:
        self.book = book
        self.config = config
        self.generator = generator
        self.profile = get_size_profile(config.target_node_count)
        self.cache = cache or PipelineCache.in_memory(book, config.target_node_count)
        self._on_progress = on_progress
        self._precomputed_summary = summary
        self.results: list[StageResult] = []
        self.enrichment: EnrichmentReport | None = None
        self.report: ValidationReport | None = None

    async def run(self) -> GameData:
        """Run every stage and return the validated game.

        Raises:
            PipelineError: If a stage receives output that breaks its contract.
            CacheCorruptionError: If a cached artifact cannot be read back.
            ProviderError: If a generation call fails.
        """
        log.info(
            "pipeline_start",
            book=self.book.title,
            target_nodes=self.profile.target_nodes,
            mode=self.profile.mode.value,
            cache=self.cache.location,
        )
        summary = await self._summary()
        world = await self._world(summary)
        graph = await self._graph(summary, world)

        if self.config.dry_run:
            log.info("dry_run_complete", nodes=len(graph.nodes))
            return assemble_game_data(
                self.book, world, graph, skeleton_nodes(graph), language=self.config.language
            )

        nodes = await self._content(summary, world, graph)
        game = assemble_game_data(self.book, world, graph, nodes, language=self.config.language)

        with self._stage(STAGE_ENRICHMENT) as timer:
            self._progress(STAGE_ENRICHMENT, 0)
            self.enrichment = enrich_game_data(game)
            timer.result.generated = (
                self.enrichment.loops_added
                + self.enrichment.patterns_injected
                + self.enrichment.interactions_padded
            )
            self._progress(STAGE_ENRICHMENT, 100)

        with self._stage(STAGE_VALIDATION):
            self._progress(STAGE_VALIDATION, 0)
            self.report = validate_and_fix(game, graph)
            self._progress(STAGE_VALIDATION, 100)

        log.info("pipeline_complete", nodes=len(game.nodes), summary=self.report.summary)
        return game

    # -- Plumbing --------------------------------------------------------------

    def _progress(self, stage: str, percent: float) -> None:
        if self._on_progress is not None:
            self._on_progress(stage, int(percent))

    @contextmanager
    def _stage(self, name: str) -> Iterator[_StageTimer]:
        timer = _StageTimer(StageResult(stage=name))
        log.info("stage_start", stage=name)
        try:
            yield timer
        except StageError as e:
            log.error("stage_failed", stage=name, error=str(e))
            raise PipelineError(e.stage, str(e)) from e
        except Exception as e:
            log.error(
                "stage_failed",
                stage=name,
                error=str(e),
                duration=f"{time.perf_counter() - timer.start:.2f}s",
            )
            raise
        timer.result.duration_seconds = time.perf_counter() - timer.start
        self.results.append(timer.result)
        log.info(
            "stage_complete",
            stage=name,
            cached=timer.result.cached,
            generated=timer.result.generated,
            duration=f"{timer.result.duration_seconds:.2f}s",
        )

    def _load(self, stage: StageId, model_cls: type[M], key: str | None = None) -> M:
        """Load a cached artifact and validate it as *model_cls*."""
        data = self.cache.load(stage, key)
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            raise CacheCorruptionError(
                self.cache.location, f"artifact does not match its schema: {e}", stage.value, key
            ) from e

    # -- Summary and world -----------------------------------------------------

    async def _summary(self) -> StorySummary:
        with self._stage(STAGE_SUMMARY) as timer:
            self._progress(STAGE_SUMMARY, 0)
            if self._precomputed_summary is not None:
                summary = self._precomputed_summary
                data = summary.to_json_dict()
                if not self.cache.has(StageId.SUMMARY) or self.cache.load(StageId.SUMMARY) != data:
                    self.cache.save(StageId.SUMMARY, data)
                timer.result.cached = True
            elif self.cache.has(StageId.SUMMARY):
                summary = self._load(StageId.SUMMARY, StorySummary)
                timer.result.cached = True
            else:
                summary = await summarize_book(self.book, self.generator, self.profile)
                self.cache.save(StageId.SUMMARY, summary.to_json_dict())
                timer.result.generated = 1
            self._progress(STAGE_SUMMARY, 100)
        return summary

    async def _world(self, summary: StorySummary) -> WorldData:
        with self._stage(STAGE_WORLD) as timer:
            self._progress(STAGE_WORLD, 0)
            if self.cache.has(StageId.WORLD):
                world = self._load(StageId.WORLD, WorldData)
                timer.result.cached = True
            else:
                world = await build_world(summary, self.generator, self.profile)
                self.cache.save(StageId.WORLD, world.to_json_dict())
                timer.result.generated = 1
            self._progress(STAGE_WORLD, 100)
        return world

    # -- Graph -----------------------------------------------------------------

    async def _graph(self, summary: StorySummary, world: WorldData) -> StoryGraph:
        with self._stage(STAGE_GRAPH) as timer:
            if self.profile.is_hierarchical:
                graph = await self._hierarchical_graph(summary, world, timer.result)
            else:
                graph = await self._flat_graph(summary, world, timer.result)
            self._progress(STAGE_GRAPH, 100)
        return graph

    async def _flat_graph(self, summary: StorySummary, world: WorldData, result: StageResult) -> StoryGraph:
        self._progress(STAGE_GRAPH, 0)
        if self.cache.has(StageId.GRAPH):
            result.cached = True
            return self._load(StageId.GRAPH, StoryGraph)
        graph = await generate_flat_graph(summary, world, self.generator, self.profile)
        self.cache.save(StageId.GRAPH, graph.to_json_dict())
        result.generated = 1
        return graph

    async def _hierarchical_graph(
        self, summary: StorySummary, world: WorldData, result: StageResult
    ) -> StoryGraph:
        self._progress(STAGE_GRAPH, 5)
        if self.cache.has(StageId.ACTS):
            acts = self._load(StageId.ACTS, ActStructure)
        else:
            acts = await generate_acts(summary, world, self.generator, self.profile)
            self.cache.save(StageId.ACTS, acts.to_json_dict())
            result.generated += 1
        act_list = _unique_by_id(acts.acts, "act")
        self._progress(STAGE_GRAPH, 20)

        chapter_structures = await self._chapters(act_list, summary, result)
        self._progress(STAGE_GRAPH, 40)

        chapters = _unique_by_id(
            [chapter for structure in chapter_structures for chapter in structure.chapters], "chapter"
        )
        chapter_graphs = await self._scenes(chapters, world, result)

        graph = resolve_connections(
            acts.model_copy(update={"acts": act_list}), chapter_structures, chapter_graphs
        )
        if not graph.nodes:
            raise StageError("scenes", "no scene nodes were generated")
        self._progress(STAGE_GRAPH, 85)
        result.cached = result.generated == 0
        log.debug("graph_resolved", nodes=len(graph.nodes), unresolved=len(find_unresolved(graph)))
        return graph

    async def _generate_chapters(
        self, act: ActDescriptor, summary: StorySummary
    ) -> ChapterStructure:
        structure = await generate_chapters(act, summary, self.generator, self.profile)
        self.cache.save(StageId.CHAPTERS, structure.to_json_dict(), key=act.id)
        return structure

    async def _chapters(
        self, acts: list[ActDescriptor], summary: StorySummary, result: StageResult
    ) -> list[ChapterStructure]:
        found: dict[str, ChapterStructure] = {}
        for act in acts:
            if self.cache.has(StageId.CHAPTERS, act.id):
                found[act.id] = self._load(StageId.CHAPTERS, ChapterStructure, act.id)
        missing = [act for act in acts if act.id not in found]
        generated = await run_bounded(
            [partial(self._generate_chapters, act, summary) for act in missing],
            self.config.concurrency,
        )
        found.update({act.id: structure for act, structure in zip(missing, generated, strict=True)})
        result.generated += len(missing)
        return [found[act.id] for act in acts]

    async def _generate_scenes(self, chapter: ChapterDescriptor, world: WorldData) -> ChapterGraph:
        chapter_graph = await generate_scenes(chapter, world, self.generator)
        self.cache.save(StageId.SCENES, chapter_graph.to_json_dict(), key=chapter.id)
        return chapter_graph

    async def _scenes(
        self, chapters: list[ChapterDescriptor], world: WorldData, result: StageResult
    ) -> list[ChapterGraph]:
        found: dict[str, ChapterGraph] = {}
        for chapter in chapters:
            if self.cache.has(StageId.SCENES, chapter.id):
                found[chapter.id] = self._load(StageId.SCENES, ChapterGraph, chapter.id)
        missing = [chapter for chapter in chapters if chapter.id not in found]
        total = len(chapters)
        done = len(found)

        def on_scene(completed: int, _total: int) -> None:
            self._progress(STAGE_GRAPH, 40 + 40 * (done + completed) / total)

        if total:
            on_scene(0, len(missing))
        generated = await run_bounded(
            [partial(self._generate_scenes, chapter, world) for chapter in missing],
            self.config.concurrency,
            on_progress=on_scene,
        )
        found.update({chapter.id: graph for chapter, graph in zip(missing, generated, strict=True)})
        result.generated += len(missing)
        return [found[chapter.id] for chapter in chapters]

    # -- Content ---------------------------------------------------------------

    async def _generate_content(
        self, index: int, task: TaskSpec, batch: list[GraphNode]
    ) -> dict[str, StoryNode]:
        nodes = await generate_batch(self.generator, task, batch)
        self.cache.save(
            StageId.CONTENT,
            {node_id: node.to_json_dict() for node_id, node in nodes.items()},
            key=batch_key(index),
        )
        return nodes

    def _load_batch(self, index: int) -> dict[str, StoryNode]:
        key = batch_key(index)
        data = self.cache.load(StageId.CONTENT, key)
        if not isinstance(data, dict):
            raise CacheCorruptionError(self.cache.location, "content batch is not an object", StageId.CONTENT.value, key)
        try:
            return {node_id: StoryNode.model_validate(node) for node_id, node in data.items()}
        except ValidationError as e:
            raise CacheCorruptionError(
                self.cache.location, f"content batch does not match its schema: {e}", StageId.CONTENT.value, key
            ) from e

    async def _content(
        self, summary: StorySummary, world: WorldData, graph: StoryGraph
    ) -> dict[str, StoryNode]:
        with self._stage(STAGE_CONTENT) as timer:
            self._progress(STAGE_CONTENT, 5)
            batches = create_batches(graph.nodes)
            total = len(batches)

            results: dict[int, dict[str, StoryNode]] = {}
            for index in range(total):
                if self.cache.has(StageId.CONTENT, batch_key(index)):
                    results[index] = self._load_batch(index)
            done = len(results)
            if done:
                self._progress(STAGE_CONTENT, 5 + 90 * done / total)
            log.debug("content_batches", total=total, cached=done)

            global_context = build_global_context(summary, self.book.title)
            world_context = build_world_context(world)
            missing = [index for index in range(total) if index not in results]
            tasks = [
                partial(
                    self._generate_content,
                    index,
                    content_task(batches[index], index, total, graph, world, global_context, world_context),
                    batches[index],
                )
                for index in missing
            ]

            def on_batch(settled: int, _total: int) -> None:
                self._progress(STAGE_CONTENT, 5 + 90 * (done + settled) / total)
                if self.config.verbose:
                    log.info("content_batch_settled", settled=done + settled, total=total)

            generated = await run_bounded(tasks, self.config.concurrency, on_progress=on_batch)
            results.update(zip(missing, generated, strict=True))

            nodes = skeleton_nodes(graph)
            for index in sorted(results):
                nodes.update(results[index])
            timer.result.cached = not missing
            timer.result.generated = len(missing)
            self._progress(STAGE_CONTENT, 100)
        return nodes


def _unique_by_id(items: list[Any], what: str) -> list[Any]:
    """Drop items whose id was already seen, keeping the first."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            log.warning("duplicate_id_ignored", kind=what, id=item.id)
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


async def run_pipeline(
    book: Book,
    config: PipelineConfig,
    on_progress: ProgressFn | None = None,
    cache: PipelineCache | None = None,
    *,
    generator: Generator,
    summary: StorySummary | None = None,
) -> GameData:
    """Generate a game from *book*.

    Args:
        book: Parsed book.
        config: Run settings.
        on_progress: Receives ``(stage_name, percent)`` updates.
        cache: Stage cache. An in-memory cache is used when omitted.
        generator: Generation backend.
        summary: Precomputed summary; replaces the summary stage.

    Returns:
        The enriched, validated game (skeleton nodes in dry-run mode).
    """
    orchestrator = PipelineOrchestrator(
        book, config, generator, cache=cache, on_progress=on_progress, summary=summary
    )
    return await orchestrator.run()

"""Tests for pipeline orchestrator."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from bookquest.cache import CacheCorruptionError, PipelineCache, StageId
from bookquest.graph import resolve_connections
from bookquest.models.graph import NodeType
from bookquest.pipeline import (
    PROGRESS_STAGES,
    PipelineConfig,
    PipelineError,
    PipelineOrchestrator,
    run_pipeline,
)
from bookquest.providers.base import ProviderError
from tests.fixtures import story_data
from tests.fixtures.fake_generator import (
    ScriptedGenerator,
    content_handler,
    flat_handlers,
    hierarchical_handlers,
)


def _config(target: int = 44, **kwargs) -> PipelineConfig:
    return PipelineConfig(target_node_count=target, **kwargs)


def _dump(nodes) -> dict:
    return {node_id: node.to_json_dict() for node_id, node in nodes.items()}


# --------------------------------------------------------------------------
# Flat mode
# --------------------------------------------------------------------------


class TestFlatRun:
    @pytest.mark.asyncio
    async def test_calls_each_stage_once_and_batches_content(self, book, flat_generator) -> None:
        game = await run_pipeline(book, _config(), generator=flat_generator)

        assert flat_generator.count("summary") == 1
        assert flat_generator.count("world") == 1
        assert flat_generator.count("graph_flat") == 1
        # 7 nodes in batches of 5
        assert flat_generator.count("content") == 2
        assert flat_generator.count("acts") == 0
        assert list(game.nodes) == [node["id"] for node in story_data.FLAT_GRAPH["nodes"]]

    @pytest.mark.asyncio
    async def test_game_carries_world_and_meta(self, book, flat_generator) -> None:
        game = await run_pipeline(book, _config(language="Dutch"), generator=flat_generator)

        assert game.meta.title == "The Lighthouse: The Adventure"
        assert game.meta.book_author == "A. Keeper"
        assert game.meta.language == "Dutch"
        assert game.initial_state.start_node_id == "arrival"
        assert game.initial_state.start_location_id == "dock"
        assert set(game.locations) == {"dock", "stairs", "lamp_room"}
        assert game.nodes["arrival"].content == "You are at arrival."

    @pytest.mark.asyncio
    async def test_enrichment_and_validation_run(self, book, flat_generator) -> None:
        orchestrator = PipelineOrchestrator(book, _config(), flat_generator)
        game = await orchestrator.run()

        assert orchestrator.enrichment is not None
        assert orchestrator.report is not None
        assert orchestrator.report.is_valid
        for node in game.nodes.values():
            if not node.is_ending:
                assert len(node.interactions) >= 2
        assert [r.stage for r in orchestrator.results] == list(PROGRESS_STAGES)

    @pytest.mark.asyncio
    async def test_content_prompt_lists_connections(self, book, flat_generator) -> None:
        await run_pipeline(book, _config(), generator=flat_generator)

        first_batch = next(task for task in flat_generator.calls if task.template == "content")
        assert "### crossroads" in first_batch.variables["node_specs"]
        assert "climb, wait" in first_batch.variables["node_specs"]
        assert first_batch.variables["batch_size"] == 5


# --------------------------------------------------------------------------
# Hierarchical mode
# --------------------------------------------------------------------------


class TestHierarchicalRun:
    @pytest.mark.asyncio
    async def test_fans_out_per_act_and_chapter(self, book, hierarchical_generator) -> None:
        game = await run_pipeline(book, _config(101), generator=hierarchical_generator)

        assert hierarchical_generator.count("graph_flat") == 0
        assert hierarchical_generator.count("acts") == 1
        assert hierarchical_generator.count("chapters") == 2
        assert hierarchical_generator.count("scenes") == 3
        assert hierarchical_generator.count("content") == 1
        assert list(game.nodes) == ["h_dock", "h_choice", "h_stairs", "h_lamp", "h_end"]

    @pytest.mark.asyncio
    async def test_ports_resolved_and_start_from_game_start(self, book, hierarchical_generator) -> None:
        game = await run_pipeline(book, _config(101), generator=hierarchical_generator)

        assert game.initial_state.start_node_id == "h_dock"
        targets = {i.target_node_id for i in game.nodes["h_choice"].interactions}
        assert "h_stairs" in targets
        assert game.nodes["h_stairs"].chapter_ref == "ch_1_2"

    @pytest.mark.asyncio
    async def test_partitions_cached_per_act_and_chapter(self, book, hierarchical_generator) -> None:
        cache = PipelineCache.in_memory(book, 101)
        await run_pipeline(book, _config(101), cache=cache, generator=hierarchical_generator)

        assert cache.partition_keys(StageId.CHAPTERS) == ["act_1", "act_2"]
        assert sorted(cache.partition_keys(StageId.SCENES)) == ["ch_1_1", "ch_1_2", "ch_2_1"]
        assert cache.partition_keys(StageId.CONTENT) == ["batch_0"]
        assert not cache.has(StageId.GRAPH)

    @pytest.mark.asyncio
    async def test_empty_acts_raise_pipeline_error(self, book) -> None:
        handlers = hierarchical_handlers()
        handlers["acts"] = lambda task: {"acts": []}
        generator = ScriptedGenerator(handlers)

        with pytest.raises(PipelineError, match="stage 'acts'") as exc_info:
            await run_pipeline(book, _config(101), generator=generator)
        assert exc_info.value.stage == "acts"

    @pytest.mark.asyncio
    async def test_no_scene_nodes_raise_pipeline_error(self, book) -> None:
        handlers = hierarchical_handlers()
        handlers["scenes"] = lambda task: []
        generator = ScriptedGenerator(handlers)

        with pytest.raises(PipelineError) as exc_info:
            await run_pipeline(book, _config(101), generator=generator)
        assert exc_info.value.stage == "scenes"

    @pytest.mark.asyncio
    async def test_duplicate_act_ids_generate_once(self, book) -> None:
        handlers = hierarchical_handlers()
        acts = story_data.ACTS["acts"]
        handlers["acts"] = lambda task: {"acts": [acts[0], acts[0], acts[1]]}
        generator = ScriptedGenerator(handlers)

        await run_pipeline(book, _config(101), generator=generator)

        assert generator.count("chapters") == 2

    @pytest.mark.asyncio
    async def test_duplicate_act_ids_are_resolved_once(self, book) -> None:
        handlers = hierarchical_handlers()
        acts = story_data.ACTS["acts"]
        handlers["acts"] = lambda task: {"acts": [acts[0], acts[0], acts[1]]}

        with patch(
            "bookquest.pipeline.orchestrator.resolve_connections", wraps=resolve_connections
        ) as resolve:
            await run_pipeline(book, _config(101), generator=ScriptedGenerator(handlers))

        act_structure = resolve.call_args.args[0]
        assert [act.id for act in act_structure.acts] == ["act_1", "act_2"]


# --------------------------------------------------------------------------
# Dry run
# --------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dry_run_stops_after_graph(book, flat_generator) -> None:
    orchestrator = PipelineOrchestrator(book, _config(dry_run=True), flat_generator)
    game = await orchestrator.run()

    assert flat_generator.count("content") == 0
    assert len(game.nodes) == 7
    assert all(node.content == "" and not node.interactions for node in game.nodes.values())
    assert game.nodes["crossroads"].type == NodeType.CHOICE
    assert orchestrator.report is None
    assert orchestrator.enrichment is None


# --------------------------------------------------------------------------
# Caching and resume
# --------------------------------------------------------------------------


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_run_makes_no_calls(self, book, memory_cache, flat_generator) -> None:
        first = await run_pipeline(book, _config(), cache=memory_cache, generator=flat_generator)
        stamps = {stage: memory_cache.completed_at(stage) for stage in (StageId.SUMMARY, StageId.WORLD, StageId.GRAPH)}

        rerun_generator = ScriptedGenerator(flat_handlers())
        orchestrator = PipelineOrchestrator(book, _config(), rerun_generator, cache=memory_cache)
        second = await orchestrator.run()

        assert rerun_generator.calls == []
        assert _dump(second.nodes) == _dump(first.nodes)
        assert {stage: memory_cache.completed_at(stage) for stage in stamps} == stamps
        cached = {r.stage: r.cached for r in orchestrator.results}
        assert cached["storySummary"] and cached["worldBuilding"] and cached["storyGraph"]
        assert cached["nodeContent"]

    @pytest.mark.asyncio
    async def test_hierarchical_rerun_makes_no_calls(self, book, hierarchical_generator) -> None:
        cache = PipelineCache.in_memory(book, 101)
        first = await run_pipeline(book, _config(101), cache=cache, generator=hierarchical_generator)

        rerun_generator = ScriptedGenerator(hierarchical_handlers())
        second = await run_pipeline(book, _config(101), cache=cache, generator=rerun_generator)

        assert rerun_generator.calls == []
        assert _dump(second.nodes) == _dump(first.nodes)

    @pytest.mark.asyncio
    async def test_resume_after_failed_content_batch(self, book, memory_cache) -> None:
        def flaky_content(task):
            if "### light_saved" in task.variables["node_specs"]:
                return ProviderError("fake", "boom")
            return content_handler(task)

        handlers = flat_handlers()
        handlers["content"] = flaky_content
        failing = ScriptedGenerator(handlers)

        with pytest.raises(ProviderError, match="boom"):
            await run_pipeline(book, _config(concurrency=1), cache=memory_cache, generator=failing)
        assert memory_cache.partition_keys(StageId.CONTENT) == ["batch_0"]

        retry = ScriptedGenerator(flat_handlers())
        game = await run_pipeline(book, _config(concurrency=1), cache=memory_cache, generator=retry)

        assert [task.template for task in retry.calls] == ["content"]
        assert "### light_saved" in retry.calls[0].variables["node_specs"]
        assert len(game.nodes) == 7

    @pytest.mark.asyncio
    async def test_precomputed_summary_replaces_stage(self, book, memory_cache, summary, flat_generator) -> None:
        await run_pipeline(book, _config(), cache=memory_cache, generator=flat_generator, summary=summary)

        assert flat_generator.count("summary") == 0
        assert memory_cache.load(StageId.SUMMARY) == summary.to_json_dict()

    @pytest.mark.asyncio
    async def test_same_precomputed_summary_keeps_later_stages(self, book, memory_cache, summary) -> None:
        await run_pipeline(
            book, _config(), cache=memory_cache, generator=ScriptedGenerator(flat_handlers()), summary=summary
        )
        world_stamp = memory_cache.completed_at(StageId.WORLD)

        rerun = ScriptedGenerator(flat_handlers())
        await run_pipeline(book, _config(), cache=memory_cache, generator=rerun, summary=summary)

        assert rerun.calls == []
        assert memory_cache.completed_at(StageId.WORLD) == world_stamp

    @pytest.mark.asyncio
    async def test_changed_precomputed_summary_invalidates(self, book, memory_cache, summary) -> None:
        await run_pipeline(book, _config(), cache=memory_cache, generator=ScriptedGenerator(flat_handlers()))

        summary.themes = ["hope"]
        rerun = ScriptedGenerator(flat_handlers())
        await run_pipeline(book, _config(), cache=memory_cache, generator=rerun, summary=summary)

        assert rerun.count("summary") == 0
        assert rerun.count("world") == 1
        assert rerun.count("content") == 2

    @pytest.mark.asyncio
    async def test_corrupt_cached_artifact_raises(self, book, memory_cache, flat_generator) -> None:
        memory_cache.save(StageId.SUMMARY, story_data.SUMMARY)
        memory_cache.save(StageId.WORLD, {"locations": "not a mapping"})

        with pytest.raises(CacheCorruptionError, match="stage 'world'"):
            await run_pipeline(book, _config(), cache=memory_cache, generator=flat_generator)
        assert flat_generator.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_content_batch_raises(self, book, memory_cache, flat_generator) -> None:
        await run_pipeline(book, _config(), cache=memory_cache, generator=flat_generator)
        memory_cache.save(StageId.CONTENT, ["not", "an", "object"], key="batch_1")

        with pytest.raises(CacheCorruptionError, match=r"\[batch_1\]"):
            await run_pipeline(book, _config(), cache=memory_cache, generator=ScriptedGenerator(flat_handlers()))


# --------------------------------------------------------------------------
# Progress
# --------------------------------------------------------------------------


def _by_stage(events: list[tuple[str, int]]) -> dict[str, list[int]]:
    grouped: dict[str, list[int]] = {}
    for stage, percent in events:
        grouped.setdefault(stage, []).append(percent)
    return grouped


@pytest.mark.asyncio
async def test_progress_reports_every_stage_in_order(book, flat_generator) -> None:
    events: list[tuple[str, int]] = []
    await run_pipeline(book, _config(), on_progress=lambda s, p: events.append((s, p)), generator=flat_generator)

    grouped = _by_stage(events)
    assert list(grouped) == list(PROGRESS_STAGES)
    for values in grouped.values():
        assert values == sorted(values)
        assert values[-1] == 100
    assert grouped["nodeContent"] == [5, 50, 95, 100]


@pytest.mark.asyncio
async def test_hierarchical_graph_progress(book, hierarchical_generator) -> None:
    events: list[tuple[str, int]] = []
    await run_pipeline(
        book, _config(101), on_progress=lambda s, p: events.append((s, p)), generator=hierarchical_generator
    )

    graph = _by_stage(events)["storyGraph"]
    assert graph[:3] == [5, 20, 40]
    assert graph[-2:] == [85, 100]
    assert graph[-3] == 80
    assert graph == sorted(graph)


def test_target_below_minimum_rejected() -> None:
    with pytest.raises(ValueError, match="at least 5"):
        _config(4)

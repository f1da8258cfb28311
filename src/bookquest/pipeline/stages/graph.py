"""Graph stage: the navigable skeleton of the game.

Small games get the whole graph from one call. Large games are built top
down: acts, then chapters per act, then scene nodes per chapter, which
the connection resolver stitches together afterwards.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookquest.models.graph import ActStructure, ChapterGraph, ChapterStructure, GraphNode, StoryGraph
from bookquest.observability.logging import get_logger
from bookquest.pipeline.stages.base import (
    StageError,
    generate_list,
    generate_model,
    joined,
    plot_beat_lines,
    validate_output,
    world_id_lines,
)
from bookquest.providers.base import TaskSpec

if TYPE_CHECKING:
    from bookquest.models.graph import ActDescriptor, ChapterDescriptor
    from bookquest.models.summary import StorySummary
    from bookquest.models.world import WorldData
    from bookquest.pipeline.size import SizeProfile
    from bookquest.providers.base import Generator

log = get_logger(__name__)

FLAT_PLOT_BEAT_LIMIT = 25
FLAT_DECISION_LIMIT = 15
# Fallback entity lists for chapters that name none
SCENE_LOCATION_FALLBACK = 10
SCENE_CHARACTER_FALLBACK = 8


# ---------------------------------------------------------------------------
# Flat mode
# ---------------------------------------------------------------------------


def flat_graph_task(summary: StorySummary, world: WorldData, profile: SizeProfile) -> TaskSpec:
    decisions = "\n".join(
        f"- {d.description}: {' OR '.join(d.alternatives)}"
        for d in summary.decision_points[:FLAT_DECISION_LIMIT]
    )
    narrative = (
        profile.target_nodes - profile.choice_nodes - profile.ending_nodes - profile.checkpoint_nodes
    )
    return TaskSpec(
        template="graph_flat",
        variables={
            **profile.as_prompt_vars(),
            "overview": summary.overview,
            "plot_beats": plot_beat_lines(summary.plot_progression[:FLAT_PLOT_BEAT_LIMIT]),
            "decision_points": decisions or "none",
            "world_ids": world_id_lines(world),
            "narrative_nodes": max(narrative, 0),
        },
    )


async def generate_flat_graph(
    summary: StorySummary, world: WorldData, generator: Generator, profile: SizeProfile
) -> StoryGraph:
    """Generate the whole story graph in one call.

    Raises:
        StageError: If the graph has no nodes.
    """
    graph = await generate_model(generator, flat_graph_task(summary, world, profile), StoryGraph)
    if not graph.nodes:
        raise StageError("graph", "generated graph has no nodes")
    if graph.start_node_id not in graph.node_ids():
        log.warning("start_node_missing", start=graph.start_node_id, fallback=graph.nodes[0].id)
        graph.start_node_id = graph.nodes[0].id
    log.info("graph_generated", nodes=len(graph.nodes), start=graph.start_node_id)
    return graph


# ---------------------------------------------------------------------------
# Hierarchical mode
# ---------------------------------------------------------------------------


def acts_task(summary: StorySummary, world: WorldData, profile: SizeProfile) -> TaskSpec:
    return TaskSpec(
        template="acts",
        variables={
            "act_count": profile.act_count,
            "target_nodes": profile.target_nodes,
            "overview": summary.overview,
            "plot_beats": plot_beat_lines(summary.plot_progression),
            "world_ids": world_id_lines(world),
            "first_act_nodes": profile.target_nodes // 5,
        },
    )


async def generate_acts(
    summary: StorySummary, world: WorldData, generator: Generator, profile: SizeProfile
) -> ActStructure:
    """Generate the act breakdown.

    Raises:
        StageError: If no acts come back.
    """
    task = acts_task(summary, world, profile)
    data = await generator.invoke(task)
    if not isinstance(data, dict) or not data.get("acts"):
        raise StageError("acts", "no acts returned")
    structure = validate_output(generator, task, ActStructure, data)
    log.info("acts_generated", acts=len(structure.acts))
    return structure


def chapters_task(act: ActDescriptor, summary: StorySummary, profile: SizeProfile) -> TaskSpec:
    beats = [b for b in summary.plot_progression if b.beat_number in act.plot_beats]
    return TaskSpec(
        template="chapters",
        variables={
            "chapter_count": profile.chapters_for_act(act.target_node_count),
            "act_id": act.id,
            "act_title": act.title,
            "act_summary": act.summary,
            "plot_beats": plot_beat_lines(beats),
            "locations": joined(act.locations),
            "characters": joined(act.main_characters),
            "entry_points": joined(act.entry_points),
            "exit_points": joined(act.exit_points),
            "target_nodes": act.target_node_count,
        },
    )


async def generate_chapters(
    act: ActDescriptor, summary: StorySummary, generator: Generator, profile: SizeProfile
) -> ChapterStructure:
    """Generate the chapters of one act, stamping each with the act id.

    Raises:
        StageError: If no chapters come back.
    """
    task = chapters_task(act, summary, profile)
    data = await generator.invoke(task)
    if not isinstance(data, dict) or not data.get("chapters"):
        raise StageError("chapters", f"no chapters returned for act '{act.id}'")
    structure = validate_output(generator, task, ChapterStructure, data)
    for chapter in structure.chapters:
        chapter.act_id = act.id
    log.debug("chapters_generated", act=act.id, chapters=len(structure.chapters))
    return structure


def scenes_task(chapter: ChapterDescriptor, world: WorldData) -> TaskSpec:
    locations = chapter.locations or list(world.locations)[:SCENE_LOCATION_FALLBACK]
    characters = chapter.characters or list(world.characters)[:SCENE_CHARACTER_FALLBACK]
    arcs = "\n".join(
        f"- {arc.id} ({'canonical' if arc.is_canonical else 'alternate'}): {arc.summary}"
        + (f" [requires: {arc.branch_condition}]" if arc.branch_condition else "")
        for arc in chapter.narrative_arcs
    )
    world_ids = "\n".join(
        (
            f"Locations: {joined(locations)}",
            f"Characters: {joined(characters)}",
            f"Objects: {joined(world.objects)}",
            f"Items: {joined(world.items)}",
        )
    )
    return TaskSpec(
        template="scenes",
        variables={
            "target_nodes": chapter.target_node_count,
            "chapter_id": chapter.id,
            "chapter_title": chapter.title,
            "chapter_summary": chapter.summary,
            "narrative_arcs": arcs or "none",
            "entry_ports": joined(chapter.entry_ports),
            "exit_ports": joined(chapter.exit_ports),
            "world_ids": world_ids,
        },
    )


async def generate_scenes(chapter: ChapterDescriptor, world: WorldData, generator: Generator) -> ChapterGraph:
    """Generate the scene nodes of one chapter.

    An empty list is allowed; the resolver skips chapters without nodes.
    """
    nodes = await generate_list(generator, scenes_task(chapter, world), GraphNode, key="nodes")
    for node in nodes:
        if not node.chapter_title:
            node.chapter_title = chapter.title
    log.debug("scenes_generated", chapter=chapter.id, nodes=len(nodes))
    return ChapterGraph(chapter_id=chapter.id, nodes=nodes)


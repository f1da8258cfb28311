"""Content stage: narrative text and interactions, generated in batches.

Graph nodes are split into fixed-size batches. Each batch is one call
that returns an object keyed by node id. Every batch prompt carries four
kinds of context: a short global story context, the world's entity ids,
the nodes leading into the batch, and the engine features this batch is
asked to exercise.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from bookquest.models.content import GameData, GameMeta, InitialState, StoryNode
from bookquest.models.engine import batch_feature_requirements
from bookquest.observability.logging import get_logger
from bookquest.pipeline.size import CONTENT_BATCH_SIZE
from bookquest.pipeline.stages.base import joined, provider_label
from bookquest.providers.base import MalformedOutputError, TaskSpec

if TYPE_CHECKING:
    from bookquest.models.book import Book
    from bookquest.models.graph import GraphNode, StoryGraph
    from bookquest.models.summary import StorySummary
    from bookquest.models.world import WorldData
    from bookquest.providers.base import Generator

log = get_logger(__name__)

GAME_AUTHOR = "Generated by BookQuest"
GAME_VERSION = "1.0.0"
ENGINE_VERSION = "1.0.0"
OVERVIEW_EXCERPT_CHARS = 300
MAX_PREDECESSORS = 4


def batch_key(index: int) -> str:
    return f"batch_{index}"


def create_batches(nodes: Sequence[GraphNode], size: int = CONTENT_BATCH_SIZE) -> list[list[GraphNode]]:
    """Split *nodes* into consecutive batches of *size* (the last may be shorter)."""
    if size < 1:
        raise ValueError(f"batch size must be at least 1, got {size}")
    return [list(nodes[i : i + size]) for i in range(0, len(nodes), size)]


# ---------------------------------------------------------------------------
# Context builders
# ---------------------------------------------------------------------------


def build_global_context(summary: StorySummary, book_title: str) -> str:
    return (
        f'Game Title: "{book_title}: The Adventure"\n'
        f"Themes: {', '.join(summary.themes)}\n"
        f"Story: {summary.overview[:OVERVIEW_EXCERPT_CHARS]}..."
    )


def _named(registry: dict[str, dict[str, Any]], key: str = "name") -> str:
    return ", ".join(f'{entity_id}: "{body.get(key, entity_id)}"' for entity_id, body in registry.items())


def build_world_context(world: WorldData) -> str:
    objects = ", ".join(
        f'{obj_id}: "{body.get("name", obj_id)}" [states: {" -> ".join(map(str, body.get("states") or []))}]'
        for obj_id, body in world.objects.items()
    )
    return "\n".join(
        (
            f"Locations: {', '.join(world.locations)}",
            f"Characters: {_named(world.characters)}",
            f"Items: {_named(world.items)}",
            f"Objects: {objects}",
            f"Variables: {_named(world.variable_definitions, 'displayName')}",
        )
    )


def build_predecessor_context(batch: Sequence[GraphNode], graph: StoryGraph) -> str:
    """Describe up to four nodes outside the batch that lead into it."""
    batch_ids = {node.id for node in batch}
    predecessors = [
        node
        for node in graph.nodes
        if node.id not in batch_ids and any(target in batch_ids for target in node.connections)
    ]
    if not predecessors:
        return "This is the opening batch. No predecessor nodes."
    lines = [
        f'- {node.id}: "{node.title}" ({node.type}, {node.mood}, at {node.location_id})'
        for node in predecessors[:MAX_PREDECESSORS]
    ]
    return "Nodes leading into this batch:\n" + "\n".join(lines)


def _entity_refs(ids: Sequence[str], registry: dict[str, dict[str, Any]]) -> str:
    refs = [f'{i} ("{registry[i]["name"]}")' if registry.get(i, {}).get("name") else i for i in ids]
    return joined(refs)


def build_node_spec(node: GraphNode, world: WorldData) -> str:
    lines = [
        f"### {node.id}",
        f"- Type: {node.type}",
        f"- Title: {node.title}",
        f"- Location: {node.location_id}",
        f"- Characters present: {_entity_refs(node.present_characters, world.characters)}",
        f"- Objects available: {_entity_refs(node.available_objects, world.objects)}",
        f"- Chapter: {node.chapter_number}: {node.chapter_title}",
        f"- Mood: {node.mood}",
        f"- Canonical path: {str(node.canonical_path).lower()}",
        f"- Divergence level: {node.divergence_level}",
        f"- Connects to (one story/go interaction each): {joined(node.connections, 'none (ending)')}",
        f"- Back connections (one go interaction each): {joined(node.back_connections)}",
        f"- Interaction hints: {joined(node.interaction_hints)}",
    ]
    if node.plot_beat_ref is not None:
        lines.append(f"- Plot beat: #{node.plot_beat_ref}")
    return "\n".join(lines)


def content_task(
    batch: Sequence[GraphNode],
    batch_index: int,
    total_batches: int,
    graph: StoryGraph,
    world: WorldData,
    global_context: str,
    world_context: str,
) -> TaskSpec:
    features = batch_feature_requirements(batch_index, total_batches)
    return TaskSpec(
        template="content",
        variables={
            "batch_size": len(batch),
            "global_context": global_context,
            "predecessor_context": build_predecessor_context(batch, graph),
            "world_context": world_context,
            "node_specs": "\n\n".join(build_node_spec(node, world) for node in batch),
            "all_node_ids": ", ".join(graph.node_ids()),
            "required_conditions": ", ".join(features.conditions),
            "required_effects": ", ".join(features.effects),
            "required_interactions": ", ".join(features.interactions),
        },
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def parse_batch(
    data: dict[str, Any] | list[Any], batch: Sequence[GraphNode], generator: Generator
) -> dict[str, StoryNode]:
    """Validate one batch response against the batch's graph nodes.

    Generated fields override the graph metadata; graph fields the model
    left out are kept. Nodes missing from the response keep their empty
    skeleton, and ids outside the batch are dropped.

    Raises:
        MalformedOutputError: If the response is not an object or a node
            fails validation.
    """
    if not isinstance(data, dict):
        raise MalformedOutputError(provider_label(generator), "content batch must be a JSON object keyed by node id")

    batch_ids = {node.id for node in batch}
    for extra in data.keys() - batch_ids:
        log.warning("content_node_unexpected", node=extra)

    nodes: dict[str, StoryNode] = {}
    for graph_node in batch:
        skeleton = StoryNode.skeleton(graph_node)
        generated = data.get(graph_node.id)
        if not isinstance(generated, dict):
            log.warning("content_node_missing", node=graph_node.id)
            nodes[graph_node.id] = skeleton
            continue
        merged = {**skeleton.to_json_dict(), **generated, "id": graph_node.id}
        try:
            node = StoryNode.model_validate(merged)
        except ValidationError as e:
            raise MalformedOutputError(
                provider_label(generator), f"content for node '{graph_node.id}' failed validation: {e.errors()[0]['msg']}"
            ) from e
        node.chapter_ref = graph_node.chapter_id
        nodes[graph_node.id] = node
    return nodes


async def generate_batch(generator: Generator, task: TaskSpec, batch: Sequence[GraphNode]) -> dict[str, StoryNode]:
    data = await generator.invoke(task)
    nodes = parse_batch(data, batch, generator)
    log.debug("content_batch_generated", nodes=len(nodes), first=batch[0].id if batch else None)
    return nodes


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def skeleton_nodes(graph: StoryGraph) -> dict[str, StoryNode]:
    return {node.id: StoryNode.skeleton(node) for node in graph.nodes}


def renumber_chapters(graph: StoryGraph, nodes: dict[str, StoryNode]) -> int:
    """Number chapters 1, 2, 3... by first appearance of their title in graph order."""
    numbers: dict[str, int] = {}
    for graph_node in graph.nodes:
        node = nodes.get(graph_node.id)
        if node is not None and node.chapter_title and node.chapter_title not in numbers:
            numbers[node.chapter_title] = len(numbers) + 1
    for node in nodes.values():
        if node.chapter_title in numbers:
            node.chapter_number = numbers[node.chapter_title]
    return len(numbers)


def assemble_game_data(
    book: Book,
    world: WorldData,
    graph: StoryGraph,
    nodes: dict[str, StoryNode],
    *,
    language: str = "English",
    generated_at: str | None = None,
) -> GameData:
    """Build the final artifact from the stage outputs.

    ``nodes`` is used as-is (ordered like the graph) after chapter
    renumbering.
    """
    renumber_chapters(graph, nodes)
    ordered = {node_id: nodes[node_id] for node_id in graph.node_ids() if node_id in nodes}
    ordered.update({node_id: node for node_id, node in nodes.items() if node_id not in ordered})

    start = graph.start_node_id or (graph.nodes[0].id if graph.nodes else "")
    start_node = graph.get(start)
    start_location = world.initial_state.start_location_id or (start_node.location_id if start_node else "")

    return GameData(
        meta=GameMeta(
            title=f"{book.title}: The Adventure",
            author=GAME_AUTHOR,
            book_title=book.title,
            book_author=book.author,
            description=f'An interactive text adventure based on "{book.title}"',
            version=GAME_VERSION,
            generated_at=generated_at or datetime.now(UTC).isoformat(),
            engine_version=ENGINE_VERSION,
            language=language,
        ),
        initial_state=InitialState(
            start_node_id=start,
            start_location_id=start_location,
            initial_inventory=list(world.initial_state.initial_inventory),
            initial_flags=dict(world.initial_state.initial_flags),
            initial_variables=dict(world.initial_state.initial_variables),
        ),
        nodes=ordered,
        locations=world.locations,
        objects=world.objects,
        characters=world.characters,
        items=world.items,
        variable_definitions=world.variable_definitions,
    )

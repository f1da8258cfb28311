"""Merge chapter-scoped scene graphs into one story graph.

In hierarchical mode every chapter is generated independently, so a node
cannot name a node in another chapter. It names a *port* instead: a
symbolic entry point declared by the target chapter. This module maps
ports to concrete node ids, rewrites connections, gives every explorable
node a way back to a hub, and picks the start node.

Pure: inputs are never mutated, and identical inputs give an identical
graph. The result is therefore never cached; improving the merge never
requires regenerating the (expensive) chapter graphs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookquest.models.graph import GAME_START_PORT, ActSummary, GraphNode, StoryGraph
from bookquest.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from bookquest.models.graph import (
        ActStructure,
        ChapterDescriptor,
        ChapterGraph,
        ChapterStructure,
    )

log = get_logger(__name__)


def build_port_map(
    chapters: Iterable[ChapterDescriptor],
    chapter_graphs: Sequence[ChapterGraph],
) -> dict[str, str]:
    """Map each declared entry port to the first node of its chapter.

    Chapter graphs are visited in the given order. When two chapters
    declare the same port, the first mapping wins and the later one is
    ignored with a warning. Chapters without nodes claim no ports.
    A chapter id declared twice keeps its first descriptor.
    """
    by_id: dict[str, ChapterDescriptor] = {}
    for chapter in chapters:
        by_id.setdefault(chapter.id, chapter)
    port_map: dict[str, str] = {}
    for graph in chapter_graphs:
        chapter = by_id.get(graph.chapter_id)
        if chapter is None or not graph.nodes:
            continue
        first_node = graph.nodes[0].id
        for port in chapter.entry_ports:
            if port in port_map:
                if port_map[port] != first_node:
                    log.warning(
                        "duplicate_port_ignored",
                        port=port,
                        kept=port_map[port],
                        ignored=first_node,
                        chapter=chapter.id,
                    )
                continue
            port_map[port] = first_node
    return port_map


def _rewrite(refs: list[str], node_ids: set[str], port_map: dict[str, str]) -> list[str]:
    """Keep node ids, replace known ports, leave anything else for validation."""
    return [ref if ref in node_ids else port_map.get(ref, ref) for ref in refs]


def inject_hub_back_connections(nodes: list[GraphNode]) -> int:
    """Give every non-ending, non-hub node without a way back one back-connection.

    The target is a hub at the same location when there is one, otherwise
    the first hub in the list. Returns the number of edges added.
    """
    hubs = [node for node in nodes if node.is_hub]
    if not hubs:
        return 0

    added = 0
    for node in nodes:
        if node.is_ending or node.is_hub or node.back_connections:
            continue
        hub = next((h for h in hubs if h.location_id == node.location_id), hubs[0])
        node.back_connections.append(hub.id)
        added += 1
    return added


def resolve_connections(
    act_structure: ActStructure,
    chapter_structures: Sequence[ChapterStructure],
    chapter_graphs: Sequence[ChapterGraph],
) -> StoryGraph:
    """Merge per-chapter scene graphs into a single navigable StoryGraph.

    Args:
        act_structure: Acts, used to group nodes in the result.
        chapter_structures: Chapter descriptors per act, carrying entry ports.
        chapter_graphs: Scene nodes per chapter, in merge order.

    Returns:
        The merged graph. References that match neither a node nor a port
        are left in place; ``find_unresolved`` lists them.
    """
    chapters = [chapter for structure in chapter_structures for chapter in structure.chapters]
    port_map = build_port_map(chapters, chapter_graphs)

    nodes: list[GraphNode] = []
    for graph in chapter_graphs:
        for node in graph.nodes:
            merged = node.model_copy(deep=True)
            merged.chapter_id = graph.chapter_id
            nodes.append(merged)
    node_ids = {node.id for node in nodes}

    for node in nodes:
        node.connections = _rewrite(node.connections, node_ids, port_map)
        node.back_connections = _rewrite(node.back_connections, node_ids, port_map)

    hub_links = inject_hub_back_connections(nodes)

    start_node_id = port_map.get(GAME_START_PORT) or (nodes[0].id if nodes else "")

    act_of_chapter: dict[str, str] = {}
    for chapter in chapters:
        act_of_chapter.setdefault(chapter.id, chapter.act_id)
    act_summaries: list[ActSummary] = []
    seen_acts: set[str] = set()
    for act in act_structure.acts:
        if act.id in seen_acts:
            continue
        seen_acts.add(act.id)
        act_node_ids = [
            node.id for node in nodes if act_of_chapter.get(node.chapter_id or "") == act.id
        ]
        act_summaries.append(
            ActSummary(act=act.number or 1, node_ids=act_node_ids, description=act.summary)
        )

    story_graph = StoryGraph(nodes=nodes, start_node_id=start_node_id, act_structure=act_summaries)

    unresolved = find_unresolved(story_graph)
    for node_id, ref in unresolved:
        log.warning("connection_unresolved", node=node_id, reference=ref)
    log.info(
        "connections_resolved",
        nodes=len(nodes),
        ports=len(port_map),
        hub_links=hub_links,
        unresolved=len(unresolved),
        start=start_node_id,
    )
    return story_graph


def find_unresolved(graph: StoryGraph) -> list[tuple[str, str]]:
    """List ``(node_id, reference)`` pairs whose reference is not a node id."""
    node_ids = set(graph.node_ids())
    return [
        (node.id, ref)
        for node in graph.nodes
        for ref in (*node.connections, *node.back_connections)
        if ref not in node_ids
    ]

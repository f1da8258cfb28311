"""Traversal helpers over generated content nodes.

A traversal edge is anything that moves the player: an interaction with a
``targetNodeId`` or an onEnter ``go_to_node`` effect. Edges pointing at
unknown nodes are ignored here; the validator deals with them.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from bookquest.models.content import StoryNode


def successor_map(nodes: Mapping[str, StoryNode]) -> dict[str, list[str]]:
    """Distinct existing successors of every node, in first-seen order."""
    successors: dict[str, list[str]] = {}
    for node_id, node in nodes.items():
        seen: dict[str, None] = {}
        for target in node.traversal_targets():
            if target in nodes and target not in seen:
                seen[target] = None
        successors[node_id] = list(seen)
    return successors


def incoming_counts(successors: Mapping[str, list[str]]) -> dict[str, int]:
    """Number of distinct predecessors of every node."""
    counts = dict.fromkeys(successors, 0)
    for targets in successors.values():
        for target in targets:
            counts[target] = counts.get(target, 0) + 1
    return counts


def bfs_distances(
    start: str,
    successors: Mapping[str, list[str]],
    max_hops: int | None = None,
) -> dict[str, int]:
    """Hop distance from *start* to every node reachable from it."""
    if start not in successors:
        return {}
    distances = {start: 0}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        hops = distances[current]
        if max_hops is not None and hops >= max_hops:
            continue
        for target in successors.get(current, ()):
            if target not in distances:
                distances[target] = hops + 1
                queue.append(target)
    return distances


def reachable_from(start: str, successors: Mapping[str, list[str]]) -> set[str]:
    return set(bfs_distances(start, successors))

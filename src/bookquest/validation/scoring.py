"""Predecessor scoring for orphan reconnection.

When a node has no way in, the validator picks an existing node to link
from. The choice is made by a plain scoring function so that tie-breaks
can be tested in isolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from bookquest.graph.traversal import reachable_from, successor_map

if TYPE_CHECKING:
    from collections.abc import Mapping

    from bookquest.models.content import StoryNode

# Nodes already offering this many exits do not get another one
MAX_OUTGOING_LINKS = 8

SAME_PARTITION_SCORE = 10
SAME_LOCATION_SCORE = 5
SHARED_SUCCESSOR_SCORE = 3
REACHABLE_SCORE = 2


@dataclass(frozen=True)
class GraphState:
    """Snapshot of traversal structure used for scoring.

    Attributes:
        successors: Distinct existing successors per node id.
        reachable: Node ids reachable from the start node.
    """

    successors: Mapping[str, list[str]]
    reachable: frozenset[str]

    @classmethod
    def capture(cls, nodes: Mapping[str, StoryNode], start_node_id: str) -> GraphState:
        successors = successor_map(nodes)
        return cls(successors=successors, reachable=frozenset(reachable_from(start_node_id, successors)))

    def outgoing(self, node_id: str) -> int:
        return len(self.successors.get(node_id, ()))


def score_predecessor(candidate: StoryNode, orphan: StoryNode, state: GraphState) -> int:
    """Score how natural a link ``candidate -> orphan`` would be.

    Same chapter +10, same location +5, +3 for each successor both nodes
    already share, +2 if the candidate itself is reachable.
    """
    score = 0
    if candidate.partition == orphan.partition:
        score += SAME_PARTITION_SCORE
    if candidate.location_id and candidate.location_id == orphan.location_id:
        score += SAME_LOCATION_SCORE
    shared = set(state.successors.get(candidate.id, ())) & set(state.successors.get(orphan.id, ()))
    score += SHARED_SUCCESSOR_SCORE * len(shared)
    if candidate.id in state.reachable:
        score += REACHABLE_SCORE
    return score


def pick_predecessor(
    orphan: StoryNode,
    nodes: Mapping[str, StoryNode],
    state: GraphState,
    max_outgoing: int = MAX_OUTGOING_LINKS,
) -> StoryNode | None:
    """Highest-scoring eligible predecessor for *orphan*.

    Eligible: not an ending, not the orphan, fewer than ``max_outgoing``
    existing exits. Ties go to the candidate that comes first in *nodes*.
    """
    best: StoryNode | None = None
    best_score = -1
    for candidate in nodes.values():
        if candidate.id == orphan.id or candidate.is_ending:
            continue
        if state.outgoing(candidate.id) >= max_outgoing:
            continue
        score = score_predecessor(candidate, orphan, state)
        if score > best_score:
            best, best_score = candidate, score
    return best

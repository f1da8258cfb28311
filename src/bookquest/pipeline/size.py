"""Size profiles derived from the requested node count.

One number, the target node count, drives every scale decision in the
pipeline: whether the graph is generated flat or hierarchically, how many
acts and chapters it is split into, how many world entities to ask for,
and the node-type mix of a flat graph.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

# Above this many nodes a single graph call is unreliable; split into acts
HIERARCHICAL_THRESHOLD = 100
CONTENT_BATCH_SIZE = 5
MIN_TARGET_NODES = 5


class GraphMode(StrEnum):
    FLAT = "flat"
    HIERARCHICAL = "hierarchical"


@dataclass(frozen=True)
class SizeProfile:
    """Coordinated scale parameters for one run.

    The min/max style counts are passed into prompt templates as guidance;
    the LLM is free to deviate and the pipeline tolerates it.
    """

    target_nodes: int
    mode: GraphMode
    act_count: int

    # Flat-graph node mix
    choice_nodes: int
    ending_nodes: int
    checkpoint_nodes: int

    # Summary guidance
    plot_beats: int
    decision_points: int

    # World guidance
    locations: int
    characters: int
    items: int

    @property
    def is_hierarchical(self) -> bool:
        return self.mode is GraphMode.HIERARCHICAL

    def chapters_for_act(self, act_target_nodes: int) -> int:
        """Chapters to request for an act: about 15 nodes each, at least 3."""
        return max(3, math.ceil(act_target_nodes / 15))

    def as_prompt_vars(self) -> dict[str, int | str]:
        """Flatten for template substitution."""
        return {
            "target_nodes": self.target_nodes,
            "act_count": self.act_count,
            "choice_nodes": self.choice_nodes,
            "ending_nodes": self.ending_nodes,
            "checkpoint_nodes": self.checkpoint_nodes,
            "plot_beats": self.plot_beats,
            "decision_points": self.decision_points,
            "location_count": self.locations,
            "character_count": self.characters,
            "item_count": self.items,
            "mode": self.mode.value,
        }


def select_mode(target_nodes: int) -> GraphMode:
    """Flat up to the threshold, hierarchical above it."""
    return GraphMode.HIERARCHICAL if target_nodes > HIERARCHICAL_THRESHOLD else GraphMode.FLAT


def act_count_for(target_nodes: int) -> int:
    if target_nodes > 500:
        return 5
    if target_nodes > 200:
        return 4
    return 3


def get_size_profile(target_nodes: int) -> SizeProfile:
    """Build the size profile for a target node count.

    Raises:
        ValueError: If the target is below the minimum playable size.
    """
    if target_nodes < MIN_TARGET_NODES:
        raise ValueError(f"target node count must be at least {MIN_TARGET_NODES}, got {target_nodes}")

    return SizeProfile(
        target_nodes=target_nodes,
        mode=select_mode(target_nodes),
        act_count=act_count_for(target_nodes),
        choice_nodes=max(7, math.floor(target_nodes * 0.15)),
        ending_nodes=max(3, math.floor(target_nodes * 0.07)),
        checkpoint_nodes=max(2, math.floor(target_nodes * 0.05)),
        plot_beats=min(25, max(15, target_nodes // 2)),
        decision_points=min(15, max(5, target_nodes // 5)),
        locations=min(50, max(15, math.floor(target_nodes * 0.4))),
        characters=min(30, max(8, math.floor(target_nodes * 0.25))),
        items=min(60, max(14, math.floor(target_nodes * 0.35))),
    )

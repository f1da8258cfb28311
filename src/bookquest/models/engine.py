"""Closed vocabularies understood by the playback engine.

Everything the generator emits into the final artifact is checked
against these sets: the validator tallies coverage over them and the
content stage asks each batch for a phase-appropriate subset.
"""

from __future__ import annotations

from dataclasses import dataclass

INTERACTION_TYPES: tuple[str, ...] = (
    "examine",
    "take",
    "use",
    "use_on",
    "combine",
    "talk",
    "ask",
    "give",
    "go",
    "story",
)

CONDITION_TYPES: tuple[str, ...] = (
    "has_item",
    "lacks_item",
    "flag_true",
    "flag_false",
    "object_state",
    "object_state_not",
    "visited_node",
    "not_visited_node",
    "visited_location",
    "variable_eq",
    "variable_gte",
    "variable_lte",
    "variable_gt",
    "variable_lt",
    "relation_gte",
    "relation_lte",
    "in_location",
)

EFFECT_TYPES: tuple[str, ...] = (
    "add_item",
    "remove_item",
    "set_flag",
    "clear_flag",
    "set_object_state",
    "set_variable",
    "change_variable",
    "change_relation",
    "go_to_node",
    "set_location",
)

MOODS: tuple[str, ...] = ("neutral", "tense", "joyful", "mysterious", "action", "romantic", "sad")

# Interactions that move the player to another node
TRAVERSAL_INTERACTIONS = frozenset({"go", "story"})

# Minimum per-type counts for a full-size (44 node) game
INTERACTION_QUOTAS: dict[str, int] = {
    "examine": 15,
    "take": 8,
    "use": 6,
    "use_on": 2,
    "combine": 2,
    "talk": 12,
    "ask": 3,
    "give": 2,
    "go": 30,
    "story": 20,
}


@dataclass(frozen=True)
class FeatureRequirements:
    """Engine features a content batch is asked to exercise."""

    conditions: tuple[str, ...]
    effects: tuple[str, ...]
    interactions: tuple[str, ...]


# Ordered by game phase: opening, exploration, midgame, late game, climax
_PHASE_REQUIREMENTS: tuple[FeatureRequirements, ...] = (
    FeatureRequirements(
        conditions=("has_item", "lacks_item", "flag_true", "flag_false"),
        effects=("add_item", "set_flag", "set_location"),
        interactions=("examine", "take", "go", "story"),
    ),
    FeatureRequirements(
        conditions=("object_state", "object_state_not", "visited_location"),
        effects=("set_object_state", "change_variable"),
        interactions=("examine", "use", "talk", "go"),
    ),
    FeatureRequirements(
        conditions=("variable_gte", "variable_lte", "relation_gte"),
        effects=("change_relation", "remove_item"),
        interactions=("talk", "ask", "give", "combine", "story"),
    ),
    FeatureRequirements(
        conditions=("visited_node", "not_visited_node", "variable_gt", "variable_lt", "relation_lte"),
        effects=("clear_flag",),
        interactions=("use_on", "ask", "story"),
    ),
    FeatureRequirements(
        conditions=("variable_eq", "in_location"),
        effects=("go_to_node", "set_variable"),
        interactions=("story", "examine", "go"),
    ),
)


def batch_feature_requirements(batch_index: int, total_batches: int) -> FeatureRequirements:
    """Pick the feature set for a batch from its position in the game.

    The game is split into five equal phases; ``batch_index / total_batches``
    selects the phase.
    """
    if total_batches <= 0:
        raise ValueError("total_batches must be positive")
    phase = batch_index / total_batches
    bucket = min(int(phase * 5), len(_PHASE_REQUIREMENTS) - 1)
    return _PHASE_REQUIREMENTS[bucket]

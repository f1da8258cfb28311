"""Enrichment stage: deterministic gap filling after content generation.

No generation calls. Four steps run over the assembled game:

1. coverage analysis
2. navigation loops: "return to hub" links for nodes a hub can reach
3. missing patterns: template interactions for unused engine features
4. padding: nodes with fewer than four interactions get generic ones

The stage is cheap and pure, so it is recomputed on every run rather
than cached.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bookquest.graph.traversal import bfs_distances, incoming_counts, successor_map
from bookquest.models.content import Condition, Effect, Interaction
from bookquest.models.graph import NodeType
from bookquest.observability.logging import get_logger
from bookquest.validation.validator import collect_coverage

if TYPE_CHECKING:
    from bookquest.models.content import GameData, StoryNode
    from bookquest.validation.report import CoverageStats

log = get_logger(__name__)

MIN_INTERACTIONS = 4
HUB_MIN_INCOMING = 3
MAX_BACKTRACK_HOPS = 15


@dataclass
class EnrichmentReport:
    loops_added: int = 0
    patterns_injected: int = 0
    interactions_padded: int = 0
    coverage: CoverageStats | None = None
    nodes_with_few_interactions: list[str] = field(default_factory=list)


def enrich_game_data(game: GameData) -> EnrichmentReport:
    """Run every enrichment step on *game* in place."""
    report = EnrichmentReport()
    before = collect_coverage(game.nodes)

    report.loops_added = inject_navigation_loops(game)
    report.patterns_injected = inject_missing_patterns(game, before)
    report.interactions_padded = pad_minimum_interactions(game)

    report.coverage = collect_coverage(game.nodes)
    report.nodes_with_few_interactions = [
        node_id
        for node_id, node in game.nodes.items()
        if not node.is_ending and len(node.interactions) < MIN_INTERACTIONS
    ]
    log.info(
        "enrichment_complete",
        loops_added=report.loops_added,
        patterns_injected=report.patterns_injected,
        interactions_padded=report.interactions_padded,
    )
    return report


def _name_of(registry: dict[str, dict[str, Any]], entity_id: str, fallback: str) -> str:
    entry = registry.get(entity_id) or {}
    return str(entry.get("name") or fallback)


# ---------------------------------------------------------------------------
# Navigation loops
# ---------------------------------------------------------------------------


def find_hubs(game: GameData) -> list[str]:
    """Nodes players return to: checkpoints, or nodes with 3+ distinct ways in.

    Falls back to the start node when nothing qualifies.
    """
    nodes = game.nodes
    incoming = incoming_counts(successor_map(nodes))
    hubs = [
        node_id
        for node_id, node in nodes.items()
        if not node.is_ending
        and (node.type == NodeType.CHECKPOINT or incoming.get(node_id, 0) >= HUB_MIN_INCOMING)
    ]
    if not hubs and game.initial_state.start_node_id in nodes:
        hubs.append(game.initial_state.start_node_id)
    return hubs


def inject_navigation_loops(game: GameData) -> int:
    """Add a "go back" link to a hub for every node a hub can reach.

    Nodes that already have a ``go`` to some hub are left alone. Only hubs
    that reach the node within 15 hops qualify, preferring one at the
    same location.
    """
    nodes = game.nodes
    hubs = find_hubs(game)
    successors = successor_map(nodes)
    hub_reach = {hub: bfs_distances(hub, successors, MAX_BACKTRACK_HOPS) for hub in hubs}
    hub_set = set(hubs)

    added = 0
    for node_id, node in nodes.items():
        if node.is_ending:
            continue
        if any(i.type == "go" and i.target_node_id in hub_set for i in node.interactions):
            continue
        candidates = [hub for hub in hubs if hub != node_id and node_id in hub_reach[hub]]
        if not candidates:
            continue
        hub_id = next(
            (hub for hub in candidates if nodes[hub].location_id == node.location_id),
            candidates[0],
        )
        hub = nodes[hub_id]
        hub_name = _name_of(game.locations, hub.location_id, hub.title or hub_id)
        node.interactions.append(
            Interaction(
                id=f"go_back_{hub_id}_from_{node_id}",
                type="go",
                button_text=f"Return to {hub_name}",
                result_text=f"You make your way back to {hub_name.lower()}.",
                effects=[Effect(type="set_location", key=hub.location_id)] if hub.location_id else [],
                target_node_id=hub_id,
            )
        )
        added += 1
    return added


# ---------------------------------------------------------------------------
# Missing patterns
# ---------------------------------------------------------------------------


@dataclass
class _PatternContext:
    game: GameData
    open_nodes: list[StoryNode]
    items: list[str]
    characters: list[str]
    objects: list[str]
    locations: list[str]
    variables: list[str]

    def node_for(
        self, *, with_character: bool = False, with_object: bool = False, min_index: int = 0
    ) -> StoryNode:
        """First open node from *min_index* satisfying the preference, else the node at *min_index*."""
        start = min(min_index, len(self.open_nodes) - 1)
        for node in self.open_nodes[start:]:
            if with_character and not node.present_characters:
                continue
            if with_object and not node.available_objects:
                continue
            return node
        return self.open_nodes[start]

    def name(self, registry: str, entity_id: str) -> str:
        return _name_of(getattr(self.game, registry), entity_id, entity_id)

    def states(self, object_id: str) -> list[str]:
        states = self.game.objects.get(object_id, {}).get("states") or []
        return [str(state) for state in states]


_PatternBuilder = Callable[[_PatternContext], "tuple[StoryNode, Interaction] | None"]


def _use_on(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.items or not ctx.objects:
        return None
    item, obj = ctx.items[0], ctx.objects[0]
    states = ctx.states(obj)
    new_state = states[1] if len(states) > 1 else "modified"
    item_name, obj_name = ctx.name("items", item), ctx.name("objects", obj)
    return ctx.node_for(with_object=True), Interaction(
        id=f"enrich_use_on_{item}_{obj}",
        type="use_on",
        button_text=f"Use {item_name} on {obj_name}",
        result_text=f"You carefully apply the {item_name.lower()} to the {obj_name.lower()}. Something changes.",
        target_object=obj,
        requires_item=item,
        conditions=[Condition(type="has_item", key=item)],
        effects=[Effect(type="set_object_state", key=obj, value=new_state)],
    )


def _give(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.items or not ctx.characters:
        return None
    item = ctx.items[min(1, len(ctx.items) - 1)]
    char = ctx.characters[0]
    item_name, char_name = ctx.name("items", item), ctx.name("characters", char)
    return ctx.node_for(with_character=True), Interaction(
        id=f"enrich_give_{item}_to_{char}",
        type="give",
        button_text=f"Give {item_name} to {char_name}",
        result_text=f"You hand the {item_name.lower()} to {char_name}. They accept it gratefully.",
        requires_item=item,
        target_object=char,
        conditions=[Condition(type="has_item", key=item)],
        effects=[
            Effect(type="remove_item", key=item),
            Effect(type="change_relation", key=char, delta=15),
            Effect(type="set_flag", key=f"gave_{item}_to_{char}", value=True),
        ],
    )


def _ask(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.characters:
        return None
    char = ctx.characters[min(1, len(ctx.characters) - 1)]
    char_name = ctx.name("characters", char)
    return ctx.node_for(with_character=True, min_index=3), Interaction(
        id=f"enrich_ask_{char}_about_past",
        type="ask",
        button_text=f"Ask {char_name} about their past",
        result_text=f"{char_name} pauses thoughtfully before sharing a memory from long ago.",
        target_object=char,
        effects=[Effect(type="set_flag", key=f"asked_{char}_past", value=True)],
    )


def _object_state(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.objects:
        return None
    obj = ctx.objects[0]
    states = ctx.states(obj)
    initial = str(ctx.game.objects[obj].get("initialState") or (states[0] if states else "normal"))
    obj_name = ctx.name("objects", obj)
    return ctx.node_for(with_object=True, min_index=2), Interaction(
        id=f"enrich_examine_{obj}_state",
        type="examine",
        button_text=f"Inspect {obj_name} closely",
        result_text=f"You examine the {obj_name.lower()} carefully, noticing its current condition.",
        target_object=obj,
        conditions=[Condition(type="object_state", key=obj, value=initial)],
        effects=[
            Effect(type="set_object_state", key=obj, value=states[1] if len(states) > 1 else "examined")
        ],
    )


def _visited_node(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if len(ctx.open_nodes) <= 5:
        return None
    earlier = ctx.open_nodes[1].id
    return ctx.node_for(min_index=5), Interaction(
        id=f"enrich_reflect_visited_{earlier}",
        type="examine",
        button_text="Reflect on earlier events",
        result_text="Your mind drifts back to what happened earlier. The memory gives you new perspective.",
        conditions=[Condition(type="visited_node", key=earlier)],
        effects=[Effect(type="set_flag", key=f"reflected_on_{earlier}", value=True)],
    )


def _not_visited_node(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if len(ctx.open_nodes) <= 5:
        return None
    later = ctx.open_nodes[min(len(ctx.open_nodes) - 2, 8)].id
    return ctx.node_for(min_index=3), Interaction(
        id=f"enrich_wonder_not_visited_{later}",
        type="examine",
        button_text="Consider the path ahead",
        result_text="You sense there is much yet undiscovered. Perhaps you should explore further.",
        conditions=[Condition(type="not_visited_node", key=later)],
    )


def _relation_gte(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.characters:
        return None
    char = ctx.characters[0]
    char_name = ctx.name("characters", char)
    return ctx.node_for(with_character=True, min_index=6), Interaction(
        id=f"enrich_talk_trusted_{char}",
        type="talk",
        button_text=f"Confide in {char_name}",
        result_text=f'{char_name} leans in close. "I trust you too," they say.',
        target_object=char,
        conditions=[Condition(type="relation_gte", key=char, value=30)],
        effects=[Effect(type="set_flag", key=f"confided_{char}", value=True)],
    )


def _variable_eq(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.variables:
        return None
    var = ctx.variables[0]
    var_name = str(ctx.game.variable_definitions[var].get("displayName") or var)
    return ctx.node_for(min_index=len(ctx.open_nodes) // 2), Interaction(
        id=f"enrich_check_var_eq_{var}",
        type="examine",
        button_text=f"Take stock of your {var_name.lower()}",
        result_text=f"You pause to consider your {var_name.lower()}. Nothing has changed yet.",
        conditions=[Condition(type="variable_eq", key=var, value=0)],
    )


def _clear_flag(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    node = ctx.node_for(min_index=len(ctx.open_nodes) * 3 // 4)
    return node, Interaction(
        id="enrich_clear_flag_reset",
        type="examine",
        button_text="Clear your head",
        result_text="You let go of your earlier worries and focus on what lies ahead.",
        conditions=[Condition(type="flag_true", key=f"visited_{node.id}")],
        effects=[Effect(type="clear_flag", key=f"visited_{node.id}")],
    )


def _set_variable(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.variables:
        return None
    var = ctx.variables[0]
    return ctx.node_for(min_index=len(ctx.open_nodes) - 1), Interaction(
        id=f"enrich_set_variable_{var}",
        type="examine",
        button_text="Steady yourself",
        result_text="You gather your resolve for what comes next.",
        effects=[Effect(type="set_variable", key=var, value=10)],
    )


def _change_relation(ctx: _PatternContext) -> tuple[StoryNode, Interaction] | None:
    if not ctx.characters:
        return None
    char = ctx.characters[0]
    char_name = ctx.name("characters", char)
    return ctx.node_for(with_character=True), Interaction(
        id=f"enrich_befriend_{char}",
        type="talk",
        button_text=f"Share a kind word with {char_name}",
        result_text=f"{char_name} smiles, warmed by your words.",
        target_object=char,
        effects=[Effect(type="change_relation", key=char, delta=10)],
    )


# (category, kind) -> builder; category matches the CoverageStats "missing_*" list
_PATTERNS: tuple[tuple[str, str, _PatternBuilder], ...] = (
    ("interaction", "use_on", _use_on),
    ("interaction", "give", _give),
    ("interaction", "ask", _ask),
    ("condition", "object_state", _object_state),
    ("condition", "visited_node", _visited_node),
    ("condition", "not_visited_node", _not_visited_node),
    ("condition", "relation_gte", _relation_gte),
    ("condition", "variable_eq", _variable_eq),
    ("effect", "clear_flag", _clear_flag),
    ("effect", "set_variable", _set_variable),
    ("effect", "change_relation", _change_relation),
)


def inject_missing_patterns(game: GameData, coverage: CoverageStats) -> int:
    """Add one template interaction for each unused feature that has a pattern."""
    open_nodes = [node for node in game.nodes.values() if not node.is_ending]
    if not open_nodes:
        return 0
    ctx = _PatternContext(
        game=game,
        open_nodes=open_nodes,
        items=list(game.items),
        characters=list(game.characters),
        objects=list(game.objects),
        locations=list(game.locations),
        variables=list(game.variable_definitions),
    )
    missing = {
        "interaction": set(coverage.missing_interaction_types),
        "condition": set(coverage.missing_condition_types),
        "effect": set(coverage.missing_effect_types),
    }

    injected = 0
    for category, kind, builder in _PATTERNS:
        if kind not in missing[category]:
            continue
        built = builder(ctx)
        if built is None:
            continue
        node, interaction = built
        if any(existing.id == interaction.id for existing in node.interactions):
            continue
        node.interactions.append(interaction)
        injected += 1
        log.debug("pattern_injected", kind=kind, node=node.id, interaction=interaction.id)
    return injected


# ---------------------------------------------------------------------------
# Padding
# ---------------------------------------------------------------------------


def pad_minimum_interactions(game: GameData) -> int:
    """Top up sparse nodes with a look-around and a greeting."""
    padded = 0
    for node_id, node in game.nodes.items():
        if node.is_ending or len(node.interactions) >= MIN_INTERACTIONS:
            continue

        location = _name_of(game.locations, node.location_id, "")
        if not any(i.type == "examine" for i in node.interactions):
            node.interactions.append(
                Interaction(
                    id=f"pad_examine_{node_id}",
                    type="examine",
                    button_text=f"Look around {location or 'the area'}",
                    result_text=(
                        "You take in your surroundings, noting every detail of "
                        f"{(location or 'this place').lower()}."
                    ),
                )
            )
            padded += 1

        if len(node.interactions) < MIN_INTERACTIONS and node.present_characters:
            char_id = node.present_characters[0]
            char = game.characters.get(char_id)
            already = any(i.type == "talk" and i.target_object == char_id for i in node.interactions)
            if char and not already:
                name = str(char.get("name") or char_id)
                node.interactions.append(
                    Interaction(
                        id=f"pad_talk_{char_id}_{node_id}",
                        type="talk",
                        button_text=f"Speak with {name}",
                        result_text=f'{name} acknowledges you with a nod. "What brings you here?" they ask.',
                        target_object=char_id,
                    )
                )
                padded += 1
    return padded

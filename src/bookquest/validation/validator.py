"""Structural validation and deterministic repair of generated content.

Two passes run over ``GameData.nodes``:

Pass A (structural, repairs in place)
    start checks, duplicate interaction ids, dangling navigation targets,
    graph edges the content forgot, orphans with no way in, and regions
    that cannot be reached from the start node.
    Entity references are checked too, but only reported.

Pass B (coverage, report only)
    tallies interaction, condition and effect kinds against the engine's
    closed sets. Unused kinds become warnings and are never synthesized.

Repairs are deterministic and idempotent: validating already-validated
content applies no further fixes. Nothing here raises for content
problems; everything lands in the returned ValidationReport.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING
from bookquest.graph.traversal import successor_map
from bookquest.graph.traversal import reachable_from, successor_map
from bookquest.models.content import Effect, Interaction
from bookquest.models.engine import CONDITION_TYPES, EFFECT_TYPES, INTERACTION_TYPES
from bookquest.models.graph import NodeType
from bookquest.observability.logging import get_logger
from bookquest.validation.report import CoverageStats, ValidationReport
from bookquest.validation.scoring import GraphState, pick_predecessor

if TYPE_CHECKING:
    from collections.abc import Mapping

    from bookquest.models.content import GameData, StoryNode
    from bookquest.models.graph import StoryGraph

log = get_logger(__name__)

MIN_AVG_INTERACTIONS = 4.0

# Condition/effect kinds whose key must name a registered entity
_CONDITION_REFS: dict[str, str] = {
    "has_item": "item",
    "lacks_item": "item",
    "object_state": "object",
    "object_state_not": "object",
    "visited_node": "node",
    "not_visited_node": "node",
    "visited_location": "location",
    "in_location": "location",
    "relation_gte": "character",
    "relation_lte": "character",
    "variable_eq": "variable",
    "variable_gte": "variable",
    "variable_lte": "variable",
    "variable_gt": "variable",
    "variable_lt": "variable",
}
_EFFECT_REFS: dict[str, str] = {
    "add_item": "item",
    "remove_item": "item",
    "set_object_state": "object",
    "go_to_node": "node",
    "set_location": "location",
    "change_relation": "character",
}


def validate_and_fix(game: GameData, graph: StoryGraph | None = None) -> ValidationReport:
    """Validate *game* and repair structural defects in place.

    Args:
        game: Assembled game data; ``game.nodes`` is mutated.
        graph: The story graph the content was generated from. When given,
            every edge it declares is guaranteed a matching interaction.

    Returns:
        Report of errors, warnings, applied fixes and coverage statistics.
    """
    report = ValidationReport()
    nodes = game.nodes

    _check_start(game, report)
    ending_ids = [node_id for node_id, node in nodes.items() if node.is_ending]
    if not ending_ids:
        report.warnings.append("No ending nodes found")

    _dedupe_interaction_ids(nodes, report)
    _repair_dangling_targets(nodes, ending_ids, report)
    if graph is not None:
        _enforce_graph_edges(nodes, graph, report)
    _reconnect_orphans(nodes, game.initial_state.start_node_id, report)
    _check_references(game, report)

    report.stats = collect_coverage(nodes)
    _report_coverage(report)

    log.info(
        "validation_complete",
        errors=len(report.errors),
        warnings=len(report.warnings),
        fixes=len(report.fixes),
    )
    return report


# ---------------------------------------------------------------------------
# Pass A: structure
# ---------------------------------------------------------------------------


def _check_start(game: GameData, report: ValidationReport) -> None:
    state = game.initial_state
    if state.start_node_id not in game.nodes:
        report.errors.append(f'startNodeId "{state.start_node_id}" does not exist')
    if state.start_location_id not in game.locations:
        report.errors.append(f'startLocationId "{state.start_location_id}" does not exist')


def _unique_id(base: str, taken: set[str], counter: int) -> str:
    candidate = f"{base}_{counter}"
    while candidate in taken:
        counter += 1
        candidate = f"{base}_{counter}"
    return candidate


def _dedupe_interaction_ids(nodes: Mapping[str, StoryNode], report: ValidationReport) -> None:
    for node_id, node in nodes.items():
        taken = {interaction.id for interaction in node.interactions}
        seen: set[str] = set()
        for position, interaction in enumerate(node.interactions, start=1):
            if interaction.id in seen:
                new_id = _unique_id(interaction.id, taken, position)
                report.fixes.append(
                    f'Node "{node_id}": duplicate interaction ID "{interaction.id}" -> "{new_id}"'
                )
                interaction.id = new_id
                taken.add(new_id)
            seen.add(interaction.id)


def _repair_dangling_targets(
    nodes: Mapping[str, StoryNode], ending_ids: list[str], report: ValidationReport
) -> None:
    fallback = ending_ids[0] if ending_ids else None
    for node_id, node in nodes.items():
        for interaction in node.interactions:
            target = interaction.target_node_id
            if not target or target in nodes:
                continue
            if fallback is None:
                report.warnings.append(f'Node "{node_id}": dangling targetNodeId "{target}"')
                continue
            interaction.target_node_id = fallback
            report.fixes.append(f'Node "{node_id}": dangling targetNodeId "{target}" -> "{fallback}"')
        for effect in node.on_enter:
            if effect.type == "go_to_node" and effect.key not in nodes:
                report.warnings.append(f'Node "{node_id}": onEnter go_to_node "{effect.key}" not found')


def _link_interaction(
    source: StoryNode, target: StoryNode, prefix: str, interaction_type: str
) -> Interaction:
    """Minimal traversal interaction from *source* to *target*."""
    taken = {interaction.id for interaction in source.interactions}
    interaction_id = f"{prefix}_{target.id}"
    if interaction_id in taken:
        interaction_id = _unique_id(interaction_id, taken, 2)
    effects: list[Effect] = []
    if interaction_type == "go" and target.location_id:
        effects.append(Effect(type="set_location", key=target.location_id))
    return Interaction(
        id=interaction_id,
        type=interaction_type,
        button_text=target.title or target.id,
        result_text="",
        effects=effects,
        target_node_id=target.id,
    )


def _enforce_graph_edges(
    nodes: Mapping[str, StoryNode], graph: StoryGraph, report: ValidationReport
) -> None:
    for graph_node in graph.nodes:
        node = nodes.get(graph_node.id)
        if node is None:
            continue
        linked = {i.target_node_id for i in node.interactions if i.target_node_id}
        declared = [(ref, "graph_link", "story") for ref in graph_node.connections]
        declared += [(ref, "graph_back", "go") for ref in graph_node.back_connections]
        for ref, prefix, interaction_type in declared:
            target = nodes.get(ref)
            if target is None:
                report.warnings.append(f'Node "{graph_node.id}": graph connection "{ref}" does not resolve')
                continue
            if ref in linked:
                continue
            node.interactions.append(_link_interaction(node, target, prefix, interaction_type))
            linked.add(ref)
            report.fixes.append(f'Node "{graph_node.id}": added missing graph connection to "{ref}"')


def _predecessors(successors: Mapping[str, list[str]]) -> dict[str, set[str]]:
    preds: dict[str, set[str]] = {node_id: set() for node_id in successors}
    for source, targets in successors.items():
        for target in targets:
            if target != source:
                preds[target].add(source)
    return preds


def _reconnect_orphans(
    nodes: Mapping[str, StoryNode], start_node_id: str, report: ValidationReport
) -> None:
    """Give every non-start node without a way in one incoming edge."""
    preds = _predecessors(successor_map(nodes))
    orphans = [node_id for node_id in nodes if node_id != start_node_id and not preds[node_id]]

    for orphan_id in orphans:
        orphan = nodes[orphan_id]
        state = GraphState.capture(nodes, start_node_id)
        source = pick_predecessor(orphan, nodes, state)
        if source is None:
            report.warnings.append(f'Orphan node "{orphan_id}" has no incoming links and no eligible predecessor')
            continue
        source.interactions.append(_link_interaction(source, orphan, "reconnect", "go"))
        report.fixes.append(f'Orphan node "{orphan_id}": reconnected from "{source.id}"')
        log.debug("orphan_reconnected", orphan=orphan_id, source=source.id)

    if start_node_id in nodes:
        _reconnect_unreachable(nodes, start_node_id, report)


def _reconnect_unreachable(
    nodes: Mapping[str, StoryNode], start_node_id: str, report: ValidationReport
) -> None:
    """Link cut-off regions (cycles with no way in from the start) one node at a time.

    Each round links the first unreachable node from a reachable node, then
    recomputes reachability, since one link can open a whole region.
    """
    while True:
        state = GraphState.capture(nodes, start_node_id)
        unreachable = [node_id for node_id in nodes if node_id not in state.reachable]
        if not unreachable:
            return

        target = nodes[unreachable[0]]
        reachable_nodes = {node_id: node for node_id, node in nodes.items() if node_id in state.reachable}
        source = pick_predecessor(target, reachable_nodes, state)
        if source is None:
            for node_id in unreachable:
                report.warnings.append(f'Node "{node_id}" is not reachable from the start node')
            return
        source.interactions.append(_link_interaction(source, target, "reconnect", "go"))
        report.fixes.append(f'Unreachable node "{target.id}": reconnected from "{source.id}"')
        log.debug("unreachable_reconnected", node=target.id, source=source.id)


def _check_references(game: GameData, report: ValidationReport) -> None:
    registries: dict[str, set[str]] = {
        "item": set(game.items),
        "object": set(game.objects),
        "node": set(game.nodes),
        "location": set(game.locations),
        "character": set(game.characters),
        "variable": set(game.variable_definitions),
    }
    for node_id, node in game.nodes.items():
        if node.location_id and node.location_id not in registries["location"]:
            report.warnings.append(f'Node "{node_id}": locationId "{node.location_id}" not found')
        for char_id in node.present_characters:
            if char_id not in registries["character"]:
                report.warnings.append(f'Node "{node_id}": character "{char_id}" not found')
        for obj_id in node.available_objects:
            if obj_id not in registries["object"]:
                report.warnings.append(f'Node "{node_id}": object "{obj_id}" not found')

        for interaction in node.interactions:
            where = f'Node "{node_id}", interaction "{interaction.id}"'
            for condition in interaction.conditions:
                kind = _CONDITION_REFS.get(condition.type)
                if kind and condition.key not in registries[kind]:
                    report.warnings.append(f'{where}: {kind} "{condition.key}" in {condition.type} condition not found')
            for effect in interaction.effects:
                kind = _EFFECT_REFS.get(effect.type)
                if kind and effect.key not in registries[kind]:
                    report.warnings.append(f'{where}: {kind} "{effect.key}" in {effect.type} effect not found')

        if not node.is_ending and not node.interactions:
            report.warnings.append(f'Node "{node_id}" ({node.type.value}): has no interactions')


# ---------------------------------------------------------------------------
# Pass B: coverage
# ---------------------------------------------------------------------------


def collect_coverage(nodes: Mapping[str, StoryNode]) -> CoverageStats:
    """Count every interaction, condition and effect kind in use.

    onEnter effects are included in the effect counts.
    """
    interaction_counts: Counter[str] = Counter()
    condition_counts: Counter[str] = Counter()
    effect_counts: Counter[str] = Counter()
    non_ending = 0
    stats = CoverageStats(total_nodes=len(nodes))

    for node in nodes.values():
        if node.is_ending:
            stats.ending_nodes += 1
        else:
            non_ending += 1
            if node.type == NodeType.CHOICE:
                stats.choice_nodes += 1
        for interaction in node.interactions:
            interaction_counts[interaction.type] += 1
            condition_counts.update(condition.type for condition in interaction.conditions)
            effect_counts.update(effect.type for effect in interaction.effects)
        effect_counts.update(effect.type for effect in node.on_enter)

    stats.total_interactions = sum(interaction_counts.values())
    stats.avg_interactions_per_node = stats.total_interactions / non_ending if non_ending else 0.0
    stats.interaction_type_counts = _closed_counts(INTERACTION_TYPES, interaction_counts)
    stats.condition_type_counts = _closed_counts(CONDITION_TYPES, condition_counts)
    stats.effect_type_counts = _closed_counts(EFFECT_TYPES, effect_counts)
    stats.missing_interaction_types = [t for t in INTERACTION_TYPES if not interaction_counts[t]]
    stats.missing_condition_types = [t for t in CONDITION_TYPES if not condition_counts[t]]
    stats.missing_effect_types = [t for t in EFFECT_TYPES if not effect_counts[t]]
    return stats


def _closed_counts(kinds: tuple[str, ...], counts: Counter[str]) -> dict[str, int]:
    """Counts for every supported kind, followed by any unsupported kinds seen."""
    result = {kind: counts[kind] for kind in kinds}
    for kind, count in sorted(counts.items()):
        if kind not in result:
            result[kind] = count
    return result


def _report_coverage(report: ValidationReport) -> None:
    stats = report.stats
    if stats.total_nodes and stats.avg_interactions_per_node < MIN_AVG_INTERACTIONS:
        report.warnings.append(
            f"Average interactions per node is {stats.avg_interactions_per_node:.1f} "
            f"(target: >= {MIN_AVG_INTERACTIONS:.1f})"
        )
    for label, missing in (
        ("interaction", stats.missing_interaction_types),
        ("condition", stats.missing_condition_types),
        ("effect", stats.missing_effect_types),
    ):
        if missing:
            report.warnings.append(f"Missing {label} types: {', '.join(missing)}")
    unsupported = [
        *(k for k in stats.interaction_type_counts if k not in INTERACTION_TYPES),
        *(k for k in stats.condition_type_counts if k not in CONDITION_TYPES),
        *(k for k in stats.effect_type_counts if k not in EFFECT_TYPES),
    ]
    if unsupported:
        report.warnings.append(f"Unsupported types in use: {', '.join(unsupported)}")

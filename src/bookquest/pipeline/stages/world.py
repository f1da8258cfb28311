"""World stage: entity registries built from the summary."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from bookquest.models.world import WorldData
from bookquest.observability.logging import get_logger
from bookquest.pipeline.stages.base import generate_model
from bookquest.providers.base import TaskSpec

if TYPE_CHECKING:
    from bookquest.models.summary import StorySummary
    from bookquest.pipeline.size import SizeProfile
    from bookquest.providers.base import Generator

log = get_logger(__name__)


def _object_lines(objects: list[dict[str, Any]], fallback: str) -> str:
    lines = []
    for obj in objects:
        line = f"- {obj.get('id', '')}: {obj.get('name', '')}"
        if obj.get("states"):
            line += f" at {obj.get('location', '')}, states: {' -> '.join(map(str, obj['states']))}"
        elif obj.get("description"):
            line += f": {obj['description']}"
        lines.append(line)
    return "\n".join(lines) or fallback


def world_task(summary: StorySummary, profile: SizeProfile) -> TaskSpec:
    carryable = [obj for obj in summary.significant_objects if obj.get("canBeCarried")]
    variables = [
        f"- {v.get('id', '')}: {v.get('displayName', '')}: {v.get('description', '')}"
        for v in summary.trackable_variables
    ]
    return TaskSpec(
        template="world",
        variables={
            "overview": summary.overview,
            "characters": "\n".join(
                f"- {c.id}: {c.name} ({c.role}): {c.description}" for c in summary.characters
            )
            or "none",
            "locations": "\n".join(f"- {loc.id}: {loc.name}: {loc.description}" for loc in summary.locations)
            or "none",
            "carryable_objects": _object_lines(carryable, "none"),
            "interactable_objects": _object_lines(
                summary.interactable_objects,
                "Generate 3-5 interactable objects with 2-3 states each",
            ),
            "variables": "\n".join(variables)
            or "Generate 3-5 trackable variables (skills, resources, knowledge)",
            "locations_target": profile.locations,
            "characters_target": profile.characters,
            "items_target": profile.items,
        },
    )


async def build_world(summary: StorySummary, generator: Generator, profile: SizeProfile) -> WorldData:
    world = await generate_model(generator, world_task(summary, profile), WorldData)
    if not world.initial_state.start_location_id and world.locations:
        world.initial_state.start_location_id = next(iter(world.locations))
    log.info(
        "world_generated",
        locations=len(world.locations),
        characters=len(world.characters),
        items=len(world.items),
        objects=len(world.objects),
    )
    return world

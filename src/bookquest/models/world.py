"""World data: the entity registries every node may reference."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from bookquest.models.base import CamelModel


class WorldInitialState(CamelModel):
    """Player state at the start of the game, minus the start node."""

    start_location_id: str = ""
    initial_inventory: list[str] = Field(default_factory=list)
    initial_flags: dict[str, bool] = Field(default_factory=dict)
    initial_variables: dict[str, int | float] = Field(default_factory=dict)


class WorldData(CamelModel):
    """Entity registries keyed by id.

    Entity bodies are kept as free-form dicts; the engine reads fields
    such as ``name``, ``states`` or ``displayName`` directly.
    """

    locations: dict[str, dict[str, Any]] = Field(default_factory=dict)
    characters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    items: dict[str, dict[str, Any]] = Field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = Field(default_factory=dict)
    variable_definitions: dict[str, dict[str, Any]] = Field(default_factory=dict)
    initial_state: WorldInitialState = Field(default_factory=WorldInitialState)

    def entity_name(self, registry: str, entity_id: str) -> str | None:
        """Display name for an entity, if it is registered."""
        entry = getattr(self, registry).get(entity_id)
        if not isinstance(entry, dict):
            return None
        name = entry.get("name") or entry.get("displayName")
        return str(name) if name else None

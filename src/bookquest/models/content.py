"""Playable content: nodes with narrative text and interactions, and the final artifact."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from bookquest.models.base import CamelModel
from bookquest.models.graph import GraphNode, NodeType, normalize_node_type

# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


class Condition(CamelModel):
    """Guard evaluated by the engine before an interaction is offered."""

    type: str
    key: str = ""
    value: Any = None


class Effect(CamelModel):
    """State change applied when an interaction fires or a node is entered."""

    type: str
    key: str = ""
    value: Any = None
    delta: int | float | None = None


class Interaction(CamelModel):
    id: str
    type: str
    button_text: str = ""
    result_text: str = ""
    target_object: str | None = None
    requires_item: str | None = None
    conditions: list[Condition] = Field(default_factory=list)
    effects: list[Effect] = Field(default_factory=list)
    target_node_id: str | None = None


class StoryNode(CamelModel):
    """A graph node together with its generated content."""

    id: str
    type: NodeType = NodeType.NARRATIVE
    title: str = ""
    content: str = ""
    location_id: str = ""
    present_characters: list[str] = Field(default_factory=list)
    available_objects: list[str] = Field(default_factory=list)
    interactions: list[Interaction] = Field(default_factory=list)
    on_enter: list[Effect] = Field(default_factory=list)
    canonical_path: bool = True
    divergence_level: int = 0
    mood: str = "neutral"
    chapter_number: int = 0
    chapter_title: str = ""
    chapter_ref: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> object:
        return normalize_node_type(value)

    @classmethod
    def skeleton(cls, node: GraphNode) -> StoryNode:
        """Empty content node carrying the graph node's metadata."""
        return cls(
            id=node.id,
            type=node.type,
            title=node.title,
            location_id=node.location_id,
            present_characters=list(node.present_characters),
            available_objects=list(node.available_objects),
            canonical_path=node.canonical_path,
            divergence_level=node.divergence_level,
            mood=node.mood,
            chapter_number=node.chapter_number,
            chapter_title=node.chapter_title,
            chapter_ref=node.chapter_id,
        )

    @property
    def is_ending(self) -> bool:
        return self.type == NodeType.ENDING

    @property
    def partition(self) -> str:
        """Key of the chapter this node was generated in."""
        return self.chapter_ref or f"chapter_{self.chapter_number}"

    def traversal_targets(self) -> list[str]:
        """Node ids reachable in one step: interaction targets and onEnter jumps."""
        targets = [i.target_node_id for i in self.interactions if i.target_node_id]
        targets.extend(
            str(effect.key) for effect in self.on_enter if effect.type == "go_to_node" and effect.key
        )
        return targets


# ---------------------------------------------------------------------------
# Final artifact
# ---------------------------------------------------------------------------


class GameMeta(CamelModel):
    title: str
    author: str
    book_title: str
    book_author: str
    description: str
    version: str = "1.0.0"
    generated_at: str = ""
    engine_version: str = "1.0.0"
    language: str = "English"


class InitialState(CamelModel):
    start_node_id: str
    start_location_id: str = ""
    initial_inventory: list[str] = Field(default_factory=list)
    initial_flags: dict[str, bool] = Field(default_factory=dict)
    initial_variables: dict[str, int | float] = Field(default_factory=dict)


class GameData(CamelModel):
    """Finished adventure handed to the playback engine."""

    meta: GameMeta
    initial_state: InitialState
    nodes: dict[str, StoryNode] = Field(default_factory=dict)
    locations: dict[str, dict[str, Any]] = Field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = Field(default_factory=dict)
    characters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    items: dict[str, dict[str, Any]] = Field(default_factory=dict)
    variable_definitions: dict[str, dict[str, Any]] = Field(default_factory=dict)

"""Story graph models: the navigable skeleton and its hierarchical parts.

Flat mode produces a ``StoryGraph`` directly. Hierarchical mode produces
``ActStructure`` -> ``ChapterStructure`` (one per act) -> ``ChapterGraph``
(one per chapter), which the connection resolver merges into a
``StoryGraph``. Connection lists in the intermediate records may hold
port names instead of node ids until that merge.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from bookquest.models.base import CamelModel

GAME_START_PORT = "game_start"


class NodeType(StrEnum):
    """Closed set of node kinds the engine understands."""

    NARRATIVE = "narrative"
    CHOICE = "choice"
    ENDING = "ending"
    CHECKPOINT = "checkpoint"


# Nodes that players naturally return to; eligible for backtracking edges
HUB_TYPES = frozenset({NodeType.CHOICE, NodeType.CHECKPOINT})

_NODE_TYPE_ALIASES = {"waypoint": "checkpoint", "ordinary": "narrative", "hub": "checkpoint"}


def normalize_node_type(value: object) -> object:
    """Map loose LLM spellings onto ``NodeType`` values; other input passes through."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        return _NODE_TYPE_ALIASES.get(lowered, lowered)
    return value


# ---------------------------------------------------------------------------
# Graph skeleton
# ---------------------------------------------------------------------------


class GraphNode(CamelModel):
    """A node of the story graph before content is written."""

    id: str = Field(min_length=1)
    type: NodeType = NodeType.NARRATIVE
    title: str = ""
    location_id: str = ""
    present_characters: list[str] = Field(default_factory=list)
    available_objects: list[str] = Field(default_factory=list)
    chapter_number: int = 0
    chapter_title: str = ""
    chapter_id: str | None = None
    mood: str = "neutral"
    canonical_path: bool = True
    divergence_level: int = 0
    connections: list[str] = Field(default_factory=list)
    back_connections: list[str] = Field(default_factory=list)
    interaction_hints: list[str] = Field(default_factory=list)
    plot_beat_ref: int | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> object:
        return normalize_node_type(value)

    @property
    def is_ending(self) -> bool:
        return self.type == NodeType.ENDING

    @property
    def is_hub(self) -> bool:
        return self.type in HUB_TYPES


class ActSummary(CamelModel):
    """Which nodes belong to which act in the merged graph."""

    act: int
    node_ids: list[str] = Field(default_factory=list)
    description: str = ""


class StoryGraph(CamelModel):
    """The merged, navigable graph."""

    nodes: list[GraphNode] = Field(default_factory=list)
    start_node_id: str = ""
    act_structure: list[ActSummary] = Field(default_factory=list)

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ---------------------------------------------------------------------------
# Hierarchical decomposition
# ---------------------------------------------------------------------------


class ActDescriptor(CamelModel):
    """One act of the story and the number of nodes it should hold."""

    id: str = Field(min_length=1)
    title: str = ""
    summary: str = ""
    plot_beats: list[int] = Field(default_factory=list)
    main_characters: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    target_node_count: int = Field(default=0, ge=0)
    entry_points: list[str] = Field(default_factory=list)
    exit_points: list[str] = Field(default_factory=list)

    @property
    def number(self) -> int:
        """Act number parsed from an ``act_<n>`` id; 0 when the id has no number."""
        _, _, suffix = self.id.rpartition("_")
        return int(suffix) if suffix.isdigit() else 0


class ActStructure(CamelModel):
    acts: list[ActDescriptor] = Field(min_length=1)


class NarrativeArc(CamelModel):
    id: str = ""
    is_canonical: bool = True
    summary: str = ""
    branch_condition: str | None = None


class ChapterDescriptor(CamelModel):
    """A chapter-scoped slice of an act, bounded by named ports."""

    id: str = Field(min_length=1)
    act_id: str = ""
    title: str = ""
    summary: str = ""
    narrative_arcs: list[NarrativeArc] = Field(default_factory=list)
    target_node_count: int = Field(default=0, ge=0)
    entry_ports: list[str] = Field(default_factory=list)
    exit_ports: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)


class ChapterStructure(CamelModel):
    """Chapters generated for one act."""

    chapters: list[ChapterDescriptor] = Field(min_length=1)


class ChapterGraph(CamelModel):
    """Scene nodes generated for one chapter."""

    chapter_id: str = ""
    nodes: list[GraphNode] = Field(default_factory=list)

"""Cached stage identifiers and their fixed order."""

from __future__ import annotations

from enum import Enum, StrEnum


class StageKind(Enum):
    """Whether a stage stores one artifact or one artifact per partition key."""

    SINGLE = "single"
    PARTITIONED = "partitioned"


class StageId(StrEnum):
    """Every cacheable stage, declared in pipeline order.

    Declaration order is the invalidation order: saving a stage discards
    everything declared after it.
    """

    SUMMARY = "summary"
    WORLD = "world"
    ACTS = "acts"
    CHAPTERS = "chapters"
    SCENES = "scenes"
    GRAPH = "graph"
    CONTENT = "content"

    @property
    def kind(self) -> StageKind:
        return _STAGE_KINDS[self]

    @property
    def is_partitioned(self) -> bool:
        return self.kind is StageKind.PARTITIONED

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)

    def later_stages(self) -> tuple[StageId, ...]:
        """Stages strictly after this one."""
        return STAGE_ORDER[self.position + 1 :]


_STAGE_KINDS: dict[StageId, StageKind] = {
    StageId.SUMMARY: StageKind.SINGLE,
    StageId.WORLD: StageKind.SINGLE,
    StageId.ACTS: StageKind.SINGLE,
    StageId.CHAPTERS: StageKind.PARTITIONED,  # keyed by act id
    StageId.SCENES: StageKind.PARTITIONED,  # keyed by chapter id
    StageId.GRAPH: StageKind.SINGLE,
    StageId.CONTENT: StageKind.PARTITIONED,  # keyed by batch_<n>
}

STAGE_ORDER: tuple[StageId, ...] = tuple(StageId)

"""Cache manifest: the durable record of which stages are complete."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import Field

from bookquest.models.base import CamelModel

MANIFEST_VERSION = 1


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(UTC).isoformat()


class StepEntry(CamelModel):
    """Where a completed stage (or partition) is stored and when it finished."""

    locator: str = Field(min_length=1)
    completed_at: str


class CacheManifest(CamelModel):
    """Per-run manifest.

    ``steps`` maps a stage name to a StepEntry for single-valued stages, or
    to ``{partition_key: StepEntry}`` for partitioned ones.
    """

    version: int = MANIFEST_VERSION
    title: str
    author: str
    target_node_count: int
    input_fingerprint: str
    created_at: str = Field(default_factory=utc_timestamp)
    updated_at: str = Field(default_factory=utc_timestamp)
    steps: dict[str, StepEntry | dict[str, StepEntry]] = Field(default_factory=dict)

"""Validation report types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class CoverageStats:
    """Aggregate figures about the finished game.

    Type counts cover every kind in the engine's closed sets, so zero
    entries are explicit; ``missing_*`` lists those zero entries.
    """

    total_nodes: int = 0
    total_interactions: int = 0
    avg_interactions_per_node: float = 0.0
    ending_nodes: int = 0
    choice_nodes: int = 0
    interaction_type_counts: dict[str, int] = field(default_factory=dict)
    condition_type_counts: dict[str, int] = field(default_factory=dict)
    effect_type_counts: dict[str, int] = field(default_factory=dict)
    missing_interaction_types: list[str] = field(default_factory=list)
    missing_condition_types: list[str] = field(default_factory=list)
    missing_effect_types: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """Result of one validation run.

    Attributes:
        errors: Fatal problems the validator could not repair.
        warnings: Non-fatal anomalies, including coverage gaps.
        fixes: Repairs applied to the content, one line each.
        stats: Coverage statistics.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fixes: list[str] = field(default_factory=list)
    stats: CoverageStats = field(default_factory=CoverageStats)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> str:
        """Human-readable one-line summary."""
        return f"{len(self.errors)} errors, {len(self.warnings)} warnings, {len(self.fixes)} fixes"

    def fixes_mentioning(self, node_id: str) -> list[str]:
        """Fix lines that name *node_id* (quoted, as every fix message does)."""
        needle = f'"{node_id}"'
        return [fix for fix in self.fixes if needle in fix]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

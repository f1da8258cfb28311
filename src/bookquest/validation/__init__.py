"""Structural validation, repair and coverage reporting for generated games."""

from bookquest.validation.report import CoverageStats, ValidationReport
from bookquest.validation.scoring import (
    MAX_OUTGOING_LINKS,
    GraphState,
    pick_predecessor,
    score_predecessor,
)
from bookquest.validation.validator import collect_coverage, validate_and_fix

__all__ = [
    "MAX_OUTGOING_LINKS",
    "CoverageStats",
    "GraphState",
    "ValidationReport",
    "collect_coverage",
    "pick_predecessor",
    "score_predecessor",
    "validate_and_fix",
]

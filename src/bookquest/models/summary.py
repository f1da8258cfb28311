"""Story summary produced by the first pipeline stage.

The summary is the only view of the book that later stages see, so it
carries everything the world builder and graph generators need: plot
beats, cast, places, decision points and trackable state.
"""

from __future__ import annotations

from pydantic import Field

from bookquest.models.base import CamelModel


class PlotBeat(CamelModel):
    """One event on the book's plot line."""

    beat_number: int = 0
    beat: str = ""
    characters: list[str] = Field(default_factory=list)
    location: str = ""
    significance: str = ""
    is_decision_point: bool = False


class SummaryCharacter(CamelModel):
    id: str = Field(min_length=1)
    name: str = ""
    role: str = ""
    description: str = ""


class SummaryLocation(CamelModel):
    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    connected_locations: list[str] = Field(default_factory=list)


class DecisionPoint(CamelModel):
    """A moment where the protagonist could have chosen differently."""

    description: str = ""
    original_choice: str = ""
    alternatives: list[str] = Field(default_factory=list)
    consequences: str = ""


class StorySummary(CamelModel):
    """Structured digest of the whole book."""

    overview: str = ""
    plot_progression: list[PlotBeat] = Field(default_factory=list)
    characters: list[SummaryCharacter] = Field(default_factory=list)
    locations: list[SummaryLocation] = Field(default_factory=list)
    decision_points: list[DecisionPoint] = Field(default_factory=list)
    significant_objects: list[dict[str, object]] = Field(default_factory=list)
    interactable_objects: list[dict[str, object]] = Field(default_factory=list)
    trackable_variables: list[dict[str, object]] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)

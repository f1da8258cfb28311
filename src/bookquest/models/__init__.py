"""Pydantic models for everything the pipeline reads, caches and emits.

Stage outputs are validated against these models as soon as they come
back from the generator; the cache stores their camelCase JSON form.
"""

from bookquest.models.book import Book, BookChapter
from bookquest.models.content import (
    Condition,
    Effect,
    GameData,
    GameMeta,
    InitialState,
    Interaction,
    StoryNode,
)
from bookquest.models.graph import (
    GAME_START_PORT,
    ActDescriptor,
    ActStructure,
    ActSummary,
    ChapterDescriptor,
    ChapterGraph,
    ChapterStructure,
    GraphNode,
    NarrativeArc,
    NodeType,
    StoryGraph,
)
from bookquest.models.summary import StorySummary
from bookquest.models.world import WorldData, WorldInitialState

__all__ = [
    "GAME_START_PORT",
    "ActDescriptor",
    "ActStructure",
    "ActSummary",
    "Book",
    "BookChapter",
    "ChapterDescriptor",
    "ChapterGraph",
    "ChapterStructure",
    "Condition",
    "Effect",
    "GameData",
    "GameMeta",
    "GraphNode",
    "InitialState",
    "Interaction",
    "NarrativeArc",
    "NodeType",
    "StoryGraph",
    "StoryNode",
    "StorySummary",
    "WorldData",
    "WorldInitialState",
]

"""Reading books and games from disk, and writing finished games."""

from bookquest.artifacts.reader import (
    ArtifactNotFoundError,
    ArtifactParseError,
    load_book,
    load_game_data,
    load_story_graph,
)
from bookquest.artifacts.writer import ArtifactWriteError, default_output_path, write_game_data

__all__ = [
    "ArtifactNotFoundError",
    "ArtifactParseError",
    "ArtifactWriteError",
    "default_output_path",
    "load_book",
    "load_game_data",
    "load_story_graph",
    "write_game_data",
]

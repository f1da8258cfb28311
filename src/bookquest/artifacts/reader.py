"""Artifact reading from JSON or YAML files."""

from __future__ import annotations

import json
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from ruamel.yaml import YAML

from bookquest.models.book import Book
from bookquest.models.content import GameData
from bookquest.models.graph import StoryGraph

T = TypeVar("T", bound=BaseModel)

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class ArtifactNotFoundError(Exception):
    """Raised when an input file doesn't exist."""

    def __init__(self, kind: str, path: Path) -> None:
        self.kind = kind
        self.path = path
        super().__init__(f"{kind} file not found: {path}")


class ArtifactParseError(Exception):
    """Raised when an input file can't be parsed or doesn't match its model."""

    def __init__(self, kind: str, path: Path, reason: str) -> None:
        self.kind = kind
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse {kind} at {path}: {reason}")


def read_document(path: Path, kind: str = "artifact") -> dict[str, Any]:
    """Read a JSON or YAML mapping.

    Files ending in ``.yaml``/``.yml`` go through ruamel.yaml; anything
    else is parsed as JSON.

    Raises:
        ArtifactNotFoundError: If the file doesn't exist.
        ArtifactParseError: If the file is empty, malformed, or not a mapping.
    """
    if not path.exists():
        raise ArtifactNotFoundError(kind, path)

    try:
        with path.open("r", encoding="utf-8") as f:
            if path.suffix.lower() in _YAML_SUFFIXES:
                data = YAML(typ="safe").load(f)
            else:
                data = json.load(f)
    except Exception as e:
        raise ArtifactParseError(kind, path, str(e)) from e

    if data is None:
        raise ArtifactParseError(kind, path, "Empty file")
    if not isinstance(data, dict):
        raise ArtifactParseError(kind, path, "Top level must be a mapping")
    return data


def _read_validated(path: Path, model: type[T], kind: str) -> T:
    data = read_document(path, kind)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ArtifactParseError(kind, path, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}") from e


def load_book(path: Path) -> Book:
    """Load a segmented book (``{title, author, chapters}``)."""
    return _read_validated(path, Book, "book")


def load_game_data(path: Path) -> GameData:
    """Load a previously generated game artifact."""
    return _read_validated(path, GameData, "game")


def load_story_graph(path: Path) -> StoryGraph:
    """Load a story graph, e.g. a cached ``graph.data`` blob."""
    return _read_validated(path, StoryGraph, "graph")

"""Writing the finished game artifact."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from bookquest.observability.logging import get_logger

if TYPE_CHECKING:
    from bookquest.models.content import GameData

log = get_logger(__name__)

OUTPUT_SUFFIX = ".adventure.json"


class ArtifactWriteError(Exception):
    """Raised when the game file can't be written."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write game at {path}: {reason}")


def default_output_path(book_path: Path) -> Path:
    """``dracula.json`` -> ``dracula.adventure.json`` beside the input."""
    return book_path.with_name(book_path.stem + OUTPUT_SUFFIX)


def write_game_data(game: GameData, path: Path) -> Path:
    """Write *game* as camelCase JSON, creating parent directories.

    Raises:
        ArtifactWriteError: If the file can't be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(game.to_json_dict(), indent=2, ensure_ascii=False)
        path.write_text(payload + "\n", encoding="utf-8")
    except OSError as e:
        raise ArtifactWriteError(path, str(e)) from e
    log.info("game_written", path=str(path), nodes=len(game.nodes))
    return path

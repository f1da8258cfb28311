"""Test CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from bookquest import __version__
from bookquest.cli import app
from bookquest.observability import close_file_logging
from bookquest.providers.base import ProviderError
from tests.fixtures import story_data
from tests.fixtures.fake_generator import ScriptedGenerator, flat_handlers
from tests.fixtures.story_data import make_game, story_node

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run from an empty directory so no stray bookquest.yaml is picked up."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("BOOKQUEST_PROVIDER", raising=False)


@pytest.fixture
def book_file(tmp_path: Path) -> Path:
    path = tmp_path / "lighthouse.json"
    path.write_text(json.dumps(story_data.make_book().to_json_dict()))
    return path


@pytest.fixture
def generators(monkeypatch: pytest.MonkeyPatch) -> list[ScriptedGenerator]:
    """Every generator the CLI builds, in order."""
    built: list[ScriptedGenerator] = []

    def build(provider):
        generator = ScriptedGenerator(flat_handlers())
        built.append(generator)
        return generator

    monkeypatch.setattr("bookquest.cli._build_generator", build)
    return built


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"BookQuest v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    result = runner.invoke(app, [])
    # no_args_is_help=True returns exit code 2 (not 0 like --help)
    assert result.exit_code == 2
    assert "BookQuest" in result.stdout


# --- generate ---


def test_generate_writes_game(tmp_path: Path, book_file: Path, generators) -> None:
    result = runner.invoke(app, ["generate", str(book_file)])

    assert result.exit_code == 0, result.stdout
    output = tmp_path / "lighthouse.adventure.json"
    game = json.loads(output.read_text())
    assert game["meta"]["title"] == "The Lighthouse: The Adventure"
    assert len(game["nodes"]) == 7
    assert "Game Statistics" in result.stdout
    assert "Validation: 0 errors" in result.stdout
    assert generators[0].count("content") == 2
    assert "Logs:" not in result.stdout


def test_generate_resumes_from_cache(tmp_path: Path, book_file: Path, generators) -> None:
    runner.invoke(app, ["generate", str(book_file)])
    result = runner.invoke(app, ["generate", str(book_file)])

    assert result.exit_code == 0, result.stdout
    assert generators[1].calls == []
    assert (tmp_path / ".cache").is_dir()


def test_generate_no_cache(tmp_path: Path, book_file: Path, generators) -> None:
    result = runner.invoke(app, ["generate", str(book_file), "--no-cache"])

    assert result.exit_code == 0, result.stdout
    assert not (tmp_path / ".cache").exists()


def test_generate_dry_run(tmp_path: Path, book_file: Path, generators) -> None:
    output = tmp_path / "out" / "skeleton.json"
    result = runner.invoke(app, ["generate", str(book_file), "--dry-run", "-o", str(output)])

    assert result.exit_code == 0, result.stdout
    assert "Dry run complete: 7 skeleton nodes" in result.stdout
    game = json.loads(output.read_text())
    assert all(node["interactions"] == [] for node in game["nodes"].values())
    assert generators[0].count("content") == 0


def test_generate_options_reach_pipeline(tmp_path: Path, book_file: Path, generators) -> None:
    result = runner.invoke(
        app, ["generate", str(book_file), "-n", "60", "-p", "2", "--provider", "openai/gpt-4o"]
    )

    assert result.exit_code == 0, result.stdout
    assert "with openai/gpt-4o (60 nodes, 2 parallel)" in result.stdout
    flat_task = next(task for task in generators[0].calls if task.template == "graph_flat")
    assert flat_task.variables["target_nodes"] == 60


def test_generate_config_file(tmp_path: Path, book_file: Path, generators) -> None:
    (tmp_path / "bookquest.yaml").write_text("provider: google\npipeline:\n  target_node_count: 50\n")

    result = runner.invoke(app, ["generate", str(book_file)])

    assert result.exit_code == 0, result.stdout
    assert "with google (50 nodes, 3 parallel)" in result.stdout


def test_generate_rejects_small_node_count(book_file: Path, generators) -> None:
    result = runner.invoke(app, ["generate", str(book_file), "-n", "3"])
    assert result.exit_code == 2


def test_generate_missing_book(tmp_path: Path, generators) -> None:
    result = runner.invoke(app, ["generate", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "book file not found" in result.stdout
    assert generators == []


def test_generate_provider_failure(book_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(provider):
        raise ProviderError("anthropic", "ANTHROPIC_API_KEY not configured")

    monkeypatch.setattr("bookquest.cli._build_generator", fail)
    result = runner.invoke(app, ["generate", str(book_file)])

    assert result.exit_code == 1
    assert "Generation failed: [anthropic] ANTHROPIC_API_KEY not configured" in result.stdout


def test_generate_pipeline_failure(book_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    handlers = flat_handlers()
    handlers["graph_flat"] = lambda task: {"startNodeId": "arrival", "nodes": []}
    monkeypatch.setattr("bookquest.cli._build_generator", lambda provider: ScriptedGenerator(handlers))

    result = runner.invoke(app, ["generate", str(book_file)])

    assert result.exit_code == 1
    assert "Pipeline error in stage 'graph'" in result.stdout


def test_generate_with_file_logging(tmp_path: Path, book_file: Path, generators) -> None:
    try:
        result = runner.invoke(app, ["--log", "generate", str(book_file)])
    finally:
        close_file_logging()

    assert result.exit_code == 0, result.stdout
    assert (tmp_path / "logs" / "debug.jsonl").exists()
    assert "Logs:" in result.stdout


# --- cache ---


def test_cache_status_and_clear(tmp_path: Path, book_file: Path, generators) -> None:
    runner.invoke(app, ["generate", str(book_file)])

    status = runner.invoke(app, ["cache", "status", str(book_file)])
    assert status.exit_code == 0
    assert "cached: summary, world, graph, content(2)" in status.stdout

    cleared = runner.invoke(app, ["cache", "clear", str(book_file)])
    assert cleared.exit_code == 0
    assert "Cleared cache" in cleared.stdout

    after = runner.invoke(app, ["cache", "status", str(book_file)])
    assert "empty cache" in after.stdout


def test_cache_status_other_target_is_empty(book_file: Path, generators) -> None:
    runner.invoke(app, ["generate", str(book_file)])

    result = runner.invoke(app, ["cache", "status", str(book_file), "--nodes", "60"])

    assert "empty cache" in result.stdout


def test_cache_status_missing_book(tmp_path: Path) -> None:
    result = runner.invoke(app, ["cache", "status", str(tmp_path / "absent.json")])
    assert result.exit_code == 1


# --- validate ---


def _write_game(path: Path) -> None:
    game = make_game(
        [
            story_node("a", ["end"]),
            story_node("end", node_type="ending"),
            story_node("b", ["end"]),
        ]
    )
    path.write_text(json.dumps(game.to_json_dict()))


def test_validate_reports_without_writing(tmp_path: Path) -> None:
    path = tmp_path / "game.json"
    _write_game(path)
    before = path.read_text()

    result = runner.invoke(app, ["validate", str(path)])

    assert result.exit_code == 0
    assert "Validation:" in result.stdout
    assert path.read_text() == before


def test_validate_fix_writes_repairs(tmp_path: Path) -> None:
    path = tmp_path / "game.json"
    _write_game(path)

    result = runner.invoke(app, ["validate", str(path), "--fix"])

    assert result.exit_code == 0
    assert "Wrote" in result.stdout
    game = json.loads(path.read_text())
    targets = [i.get("targetNodeId") for node in game["nodes"].values() for i in node["interactions"]]
    assert "b" in targets


def test_validate_missing_file(tmp_path: Path) -> None:
    result = runner.invoke(app, ["validate", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "game file not found" in result.stdout

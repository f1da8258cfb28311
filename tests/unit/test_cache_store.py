"""Tests for the resumable stage cache."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest

from bookquest.cache import (
    MANIFEST_NAME,
    STAGE_ORDER,
    CacheCorruptionError,
    CacheMissError,
    FileCacheBackend,
    MemoryCacheBackend,
    PipelineCache,
    StageId,
    artifact_name,
    cache_key,
)
from tests.fixtures.story_data import make_book

if TYPE_CHECKING:
    from pathlib import Path

    from bookquest.models.book import Book


def _fill(cache: PipelineCache) -> None:
    cache.save(StageId.SUMMARY, {"overview": "x"})
    cache.save(StageId.WORLD, {"locations": {}})
    cache.save(StageId.GRAPH, {"nodes": []})
    cache.save(StageId.CONTENT, {"a": {}}, key="batch_0")
    cache.save(StageId.CONTENT, {"b": {}}, key="batch_1")


# --- Stage identifiers ---


def test_stage_order_and_kinds() -> None:
    assert [s.value for s in StageId] == ["summary", "world", "acts", "chapters", "scenes", "graph", "content"]
    assert StageId.CHAPTERS.is_partitioned
    assert StageId.SCENES.is_partitioned
    assert StageId.CONTENT.is_partitioned
    assert not StageId.GRAPH.is_partitioned
    assert StageId.WORLD.later_stages()[0] is StageId.ACTS


def test_artifact_name_sanitizes_keys() -> None:
    assert artifact_name(StageId.SUMMARY) == "summary.data"
    assert artifact_name(StageId.SCENES, "ch 1/2") == "scenes_ch_1_2.data"


def test_cache_key_combines_title_target_and_fingerprint(book: Book) -> None:
    key = cache_key(book, 44)
    assert key.startswith("The_Lighthouse_n44_")
    assert key.endswith(book.fingerprint())


def test_fingerprint_changes_with_content() -> None:
    assert make_book(content="one").fingerprint() != make_book(content="two").fingerprint()


# --- has / load / save ---


def test_save_then_load_round_trip(memory_cache: PipelineCache) -> None:
    memory_cache.save(StageId.SUMMARY, {"overview": "A storm"})

    assert memory_cache.has(StageId.SUMMARY)
    assert memory_cache.load(StageId.SUMMARY) == {"overview": "A storm"}
    assert memory_cache.completed_at(StageId.SUMMARY) is not None


def test_load_without_entry_raises_miss(memory_cache: PipelineCache) -> None:
    with pytest.raises(CacheMissError, match="summary"):
        memory_cache.load(StageId.SUMMARY)


def test_key_rules_are_enforced(memory_cache: PipelineCache) -> None:
    with pytest.raises(ValueError, match="partitioned"):
        memory_cache.save(StageId.CONTENT, {})
    with pytest.raises(ValueError, match="single-valued"):
        memory_cache.has(StageId.SUMMARY, "k")


def test_missing_artifact_is_corruption(memory_cache: PipelineCache) -> None:
    memory_cache.save(StageId.WORLD, {"locations": {}})
    memory_cache.backend.delete(artifact_name(StageId.WORLD))

    assert not memory_cache.has(StageId.WORLD)
    with pytest.raises(CacheCorruptionError, match="missing") as exc_info:
        memory_cache.load(StageId.WORLD)
    assert exc_info.value.stage == "world"


def test_unreadable_artifact_is_corruption(memory_cache: PipelineCache) -> None:
    memory_cache.save(StageId.WORLD, {"locations": {}})
    memory_cache.backend.write(artifact_name(StageId.WORLD), b"{not json")

    with pytest.raises(CacheCorruptionError, match="unreadable"):
        memory_cache.load(StageId.WORLD)


# --- Invalidation ---


def _fill_all(cache: PipelineCache) -> None:
    """One artifact for every stage, two partitions for partitioned ones."""
    for stage in STAGE_ORDER:
        if stage.is_partitioned:
            cache.save(stage, {"part": "a"}, key="a")
            cache.save(stage, {"part": "b"}, key="b")
        else:
            cache.save(stage, {"stage": stage.value})


def _invalidation_events(mock_log: MagicMock) -> list[str]:
    return [c.kwargs["after"] for c in mock_log.info.call_args_list if c.args == ("cache_invalidated",)]


SINGLE_STAGES = [stage for stage in STAGE_ORDER if not stage.is_partitioned]


@pytest.mark.parametrize("stage", SINGLE_STAGES, ids=lambda stage: stage.value)
def test_single_stage_save_invalidates_every_later_stage(
    memory_cache: PipelineCache, stage: StageId
) -> None:
    _fill_all(memory_cache)
    blobs_before = set(memory_cache.backend.blobs)  # type: ignore[attr-defined]

    memory_cache.save(stage, {"stage": "again"})

    blobs = memory_cache.backend.blobs  # type: ignore[attr-defined]
    for later in stage.later_stages():
        assert later.value not in memory_cache.manifest.steps
        assert not any(name.startswith(later.value) for name in blobs), later.value
    for earlier in STAGE_ORDER[: stage.position + 1]:
        assert earlier.value in memory_cache.manifest.steps
    assert blobs.keys() <= blobs_before


def test_partition_saves_do_not_clobber_siblings(memory_cache: PipelineCache) -> None:
    memory_cache.save(StageId.CONTENT, {"a": 1}, key="a")
    memory_cache.save(StageId.CONTENT, {"b": 2}, key="b")

    assert memory_cache.has(StageId.CONTENT, "a")
    assert memory_cache.has(StageId.CONTENT, "b")
    assert memory_cache.partition_keys(StageId.CONTENT) == ["a", "b"]


def test_first_partition_save_invalidates_downstream_once(memory_cache: PipelineCache) -> None:
    memory_cache.save(StageId.ACTS, {"acts": []})
    memory_cache.save(StageId.GRAPH, {"nodes": []})
    memory_cache.save(StageId.CONTENT, {"a": {}}, key="batch_0")

    with patch("bookquest.cache.store.log") as mock_log:
        memory_cache.save(StageId.SCENES, {"nodes": []}, key="ch_1")
        assert not memory_cache.has(StageId.GRAPH)

        memory_cache.save(StageId.GRAPH, {"nodes": []})
        memory_cache.save(StageId.SCENES, {"nodes": []}, key="ch_2")
        memory_cache.save(StageId.SCENES, {"nodes": []}, key="ch_3")

    # GRAPH's own save invalidates nothing: content is already gone
    assert _invalidation_events(mock_log) == ["scenes"]
    assert memory_cache.has(StageId.GRAPH)
    assert memory_cache.has(StageId.ACTS)
    assert memory_cache.partition_keys(StageId.SCENES) == ["ch_1", "ch_2", "ch_3"]


def test_invalidate_after_reports_removed_stages(memory_cache: PipelineCache) -> None:
    _fill(memory_cache)
    assert memory_cache.invalidate_after(StageId.SUMMARY) == ["world", "graph", "content"]


def test_summarize_lists_cached_stages(memory_cache: PipelineCache) -> None:
    assert memory_cache.summarize() == "empty cache"
    _fill(memory_cache)
    assert memory_cache.summarize() == "cached: summary, world, graph, content(2)"
    assert memory_cache.keyed_count(StageId.CONTENT) == 2


def test_partition_keys_rejects_single_stage(memory_cache: PipelineCache) -> None:
    with pytest.raises(ValueError, match="single-valued"):
        memory_cache.partition_keys(StageId.WORLD)


def test_clear_removes_everything(memory_cache: PipelineCache) -> None:
    _fill(memory_cache)
    memory_cache.clear()

    assert memory_cache.summarize() == "empty cache"
    assert memory_cache.backend.blobs == {}  # type: ignore[attr-defined]


# --- On-disk layout ---


def test_file_cache_layout_and_reopen(tmp_path: Path, book: Book) -> None:
    cache = PipelineCache.open(tmp_path, book, 44)
    cache.save(StageId.SUMMARY, {"overview": "x"})
    cache.save(StageId.CONTENT, {"a": {}}, key="batch_0")

    root = tmp_path / ".cache" / cache_key(book, 44)
    assert (root / "summary.data").is_file()
    assert (root / "content_batch_0.data").is_file()
    manifest = json.loads((root / MANIFEST_NAME).read_text(encoding="utf-8"))
    assert manifest["targetNodeCount"] == 44
    assert manifest["inputFingerprint"] == book.fingerprint()
    assert set(manifest["steps"]) == {"summary", "content"}
    assert manifest["steps"]["content"]["batch_0"]["locator"] == "content_batch_0.data"

    reopened = PipelineCache.open(tmp_path, book, 44)
    assert reopened.load(StageId.SUMMARY) == {"overview": "x"}
    assert reopened.completed_at(StageId.SUMMARY) == cache.completed_at(StageId.SUMMARY)


def test_different_target_uses_separate_cache(tmp_path: Path, book: Book) -> None:
    PipelineCache.open(tmp_path, book, 44).save(StageId.SUMMARY, {"overview": "x"})
    assert not PipelineCache.open(tmp_path, book, 60).has(StageId.SUMMARY)


def test_probing_unused_file_cache_creates_nothing(tmp_path: Path, book: Book) -> None:
    cache = PipelineCache.open(tmp_path, book, 44)
    assert not cache.has(StageId.SUMMARY)
    assert not (tmp_path / ".cache").exists()


def test_unreadable_manifest_is_corruption(book: Book) -> None:
    backend = MemoryCacheBackend()
    backend.write(MANIFEST_NAME, b"garbage")

    with pytest.raises(CacheCorruptionError, match="unreadable manifest"):
        PipelineCache.for_backend(backend, book, 44)


def test_file_backend_rejects_path_names(tmp_path: Path) -> None:
    backend = FileCacheBackend(tmp_path)
    with pytest.raises(ValueError, match="Invalid cache blob name"):
        backend.write("../escape", b"x")


def test_corruption_message_names_stage_and_key() -> None:
    error = CacheCorruptionError("/tmp/c", "artifact 'x' is missing", "content", "batch_3")
    assert str(error) == (
        "Cache corrupted at /tmp/c for stage 'content' [batch_3]: artifact 'x' is missing. "
        "Clear the cache and retry."
    )

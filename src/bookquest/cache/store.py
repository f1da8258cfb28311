"""Resumable, manifest-backed cache of pipeline stage artifacts.

Every expensive stage saves its output here as soon as it completes, so a
run that dies halfway resumes from the last finished stage (or partition)
instead of paying for the same generation calls again.

Coherence rule: stages have a fixed order (``StageId``), and writing a
stage deletes everything after it. A partitioned stage only does this on
its first save, so sibling partitions accumulate without wiping each
other's downstream work more than once.

A single process is assumed to own a cache directory at a time. The
manifest is rewritten after every save with no locking.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from bookquest.cache.backend import FileCacheBackend, MemoryCacheBackend
from bookquest.cache.errors import CacheCorruptionError, CacheMissError
from bookquest.cache.manifest import MANIFEST_VERSION, CacheManifest, StepEntry, utc_timestamp
from bookquest.cache.stages import STAGE_ORDER, StageId
from bookquest.observability.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from bookquest.cache.backend import CacheBackend
    from bookquest.models.book import Book

log = get_logger(__name__)

MANIFEST_NAME = "_manifest.json"
CACHE_DIR_NAME = ".cache"
ARTIFACT_SUFFIX = ".data"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def cache_key(book: Book, target_node_count: int) -> str:
    """Directory name for a run: ``<title>_n<target>_<fingerprint>``."""
    return f"{book.safe_title()}_n{target_node_count}_{book.fingerprint()}"


def artifact_name(stage: StageId, key: str | None = None) -> str:
    """Blob name for a stage artifact, e.g. ``scenes_ch_1_2.data``."""
    if key is None:
        return f"{stage.value}{ARTIFACT_SUFFIX}"
    return f"{stage.value}_{_UNSAFE_CHARS.sub('_', key)}{ARTIFACT_SUFFIX}"


class PipelineCache:
    """Stage artifact store with completion tracking and downstream invalidation.

    Attributes:
        backend: Blob storage the cache reads and writes through.
        manifest: In-memory copy of the manifest, persisted on every save.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        title: str,
        author: str,
        target_node_count: int,
        fingerprint: str,
    ) -> None:
        """Open (or start) the cache held by *backend*.

        An existing manifest is loaded as-is; otherwise a fresh one is
        created in memory and only written on the first save.

        Raises:
            CacheCorruptionError: If an existing manifest cannot be parsed.
        """
        self.backend = backend
        existing = self._read_manifest()
        if existing is not None:
            self.manifest = existing
        else:
            self.manifest = CacheManifest(
                title=title,
                author=author,
                target_node_count=target_node_count,
                input_fingerprint=fingerprint,
            )

    @classmethod
    def open(cls, output_dir: Path, book: Book, target_node_count: int) -> PipelineCache:
        """Open the on-disk cache for *book* under ``output_dir/.cache/``."""
        root = output_dir / CACHE_DIR_NAME / cache_key(book, target_node_count)
        return cls.for_backend(FileCacheBackend(root), book, target_node_count)

    @classmethod
    def in_memory(cls, book: Book, target_node_count: int) -> PipelineCache:
        """A throwaway cache that never touches disk."""
        return cls.for_backend(MemoryCacheBackend(), book, target_node_count)

    @classmethod
    def for_backend(
        cls, backend: CacheBackend, book: Book, target_node_count: int
    ) -> PipelineCache:
        return cls(
            backend,
            title=book.title,
            author=book.author,
            target_node_count=target_node_count,
            fingerprint=book.fingerprint(),
        )

    @property
    def location(self) -> str:
        return self.backend.location

    # -- Queries ---------------------------------------------------------------

    def has(self, stage: StageId, key: str | None = None) -> bool:
        """True iff the manifest lists the entry and its artifact is present."""
        entry = self._entry(stage, key)
        return entry is not None and self.backend.exists(entry.locator)

    def load(self, stage: StageId, key: str | None = None) -> Any:
        """Deserialize a cached artifact.

        Raises:
            CacheMissError: If the manifest has no such entry.
            CacheCorruptionError: If the entry's artifact is missing or unreadable.
        """
        entry = self._entry(stage, key)
        if entry is None:
            raise CacheMissError(stage.value, key)
        if not self.backend.exists(entry.locator):
            raise CacheCorruptionError(
                self.location, f"artifact '{entry.locator}' is missing", stage.value, key
            )
        try:
            return json.loads(self.backend.read(entry.locator).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruptionError(
                self.location, f"artifact '{entry.locator}' is unreadable: {e}", stage.value, key
            ) from e

    def completed_at(self, stage: StageId, key: str | None = None) -> str | None:
        """Completion timestamp of an entry, or None if not cached."""
        entry = self._entry(stage, key)
        return entry.completed_at if entry else None

    def partition_keys(self, stage: StageId) -> list[str]:
        """Keys saved so far under a partitioned stage, in save order."""
        if not stage.is_partitioned:
            raise ValueError(f"Stage '{stage.value}' is single-valued and has no partitions")
        partitions = self.manifest.steps.get(stage.value)
        return list(partitions) if isinstance(partitions, dict) else []

    def keyed_count(self, stage: StageId) -> int:
        return len(self.partition_keys(stage))

    def summarize(self) -> str:
        """One-line description of what is cached, e.g. ``cached: summary, world, content(4)``."""
        parts: list[str] = []
        for stage in STAGE_ORDER:
            if stage.value not in self.manifest.steps:
                continue
            if stage.is_partitioned:
                parts.append(f"{stage.value}({self.keyed_count(stage)})")
            else:
                parts.append(stage.value)
        return f"cached: {', '.join(parts)}" if parts else "empty cache"

    # -- Mutations -------------------------------------------------------------

    def save(self, stage: StageId, data: Any, key: str | None = None) -> None:
        """Persist an artifact and record it in the manifest.

        Single-valued stages always invalidate every later stage first.
        Partitioned stages do so only when this is the first partition saved.
        """
        _check_key(stage, key)
        partitions: dict[str, StepEntry] | None = None
        if stage.is_partitioned:
            existing = self.manifest.steps.get(stage.value)
            if isinstance(existing, dict):
                partitions = existing
            else:
                self.invalidate_after(stage)
                partitions = {}
                self.manifest.steps[stage.value] = partitions
        else:
            self.invalidate_after(stage)

        locator = artifact_name(stage, key)
        payload = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        self.backend.write(locator, payload)

        now = utc_timestamp()
        entry = StepEntry(locator=locator, completed_at=now)
        if partitions is not None and key is not None:
            partitions[key] = entry
        else:
            self.manifest.steps[stage.value] = entry
        self.manifest.updated_at = now
        self._write_manifest()

        log.debug("cache_saved", stage=stage.value, key=key, locator=locator, size=len(payload))

    def invalidate_after(self, stage: StageId) -> list[str]:
        """Drop every stage after *stage*; returns the names of stages removed."""
        removed: list[str] = []
        for later in stage.later_stages():
            step = self.manifest.steps.pop(later.value, None)
            if step is None:
                continue
            entries = step.values() if isinstance(step, dict) else [step]
            for entry in entries:
                self.backend.delete(entry.locator)
            removed.append(later.value)
        if removed:
            log.info("cache_invalidated", after=stage.value, stages=removed)
        return removed

    def clear(self) -> None:
        """Delete every artifact and the manifest."""
        self.backend.clear()
        self.manifest.steps.clear()
        log.info("cache_cleared", location=self.location)

    # -- Internals -------------------------------------------------------------

    def _entry(self, stage: StageId, key: str | None) -> StepEntry | None:
        _check_key(stage, key)
        step = self.manifest.steps.get(stage.value)
        if step is None:
            return None
        if stage.is_partitioned:
            if not isinstance(step, dict):
                raise CacheCorruptionError(
                    self.location, "partitioned stage stored as a single entry", stage.value
                )
            return step.get(key) if key is not None else None
        if isinstance(step, dict):
            raise CacheCorruptionError(
                self.location, "single-valued stage stored as partitions", stage.value
            )
        return step

    def _read_manifest(self) -> CacheManifest | None:
        if not self.backend.exists(MANIFEST_NAME):
            return None
        try:
            manifest = CacheManifest.model_validate_json(self.backend.read(MANIFEST_NAME))
        except ValidationError as e:
            raise CacheCorruptionError(self.location, f"unreadable manifest: {e}") from e
        if manifest.version != MANIFEST_VERSION:
            raise CacheCorruptionError(
                self.location, f"unsupported manifest version {manifest.version}"
            )
        return manifest

    def _write_manifest(self) -> None:
        payload = json.dumps(self.manifest.to_json_dict(), indent=2, ensure_ascii=False)
        self.backend.write(MANIFEST_NAME, payload.encode("utf-8"))


def _check_key(stage: StageId, key: str | None) -> None:
    """Reject a key on a single stage, or a missing key on a partitioned one."""
    if stage.is_partitioned and key is None:
        raise ValueError(f"Stage '{stage.value}' is partitioned; a key is required")
    if not stage.is_partitioned and key is not None:
        raise ValueError(f"Stage '{stage.value}' is single-valued; got key {key!r}")

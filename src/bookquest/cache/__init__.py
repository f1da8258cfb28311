"""Resumable stage cache.

``PipelineCache`` tracks completed stages in a manifest and stores their
artifacts through a ``CacheBackend`` (files on disk, or memory in tests).
"""

from bookquest.cache.backend import CacheBackend, FileCacheBackend, MemoryCacheBackend
from bookquest.cache.errors import CacheCorruptionError, CacheError, CacheMissError
from bookquest.cache.manifest import CacheManifest, StepEntry
from bookquest.cache.stages import STAGE_ORDER, StageId, StageKind
from bookquest.cache.store import MANIFEST_NAME, PipelineCache, artifact_name, cache_key

__all__ = [
    "MANIFEST_NAME",
    "STAGE_ORDER",
    "CacheBackend",
    "CacheCorruptionError",
    "CacheError",
    "CacheManifest",
    "CacheMissError",
    "FileCacheBackend",
    "MemoryCacheBackend",
    "PipelineCache",
    "StageId",
    "StageKind",
    "StepEntry",
    "artifact_name",
    "cache_key",
]

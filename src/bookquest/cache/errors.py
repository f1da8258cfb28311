"""Cache error types."""

from __future__ import annotations

from dataclasses import dataclass


class CacheError(Exception):
    """Base class for cache failures."""


@dataclass
class CacheCorruptionError(CacheError):
    """The manifest disagrees with what is actually stored.

    Raised when the manifest cannot be parsed, or when it references an
    artifact that is missing or unreadable. Never repaired automatically;
    the cache directory has to be cleared.

    Attributes:
        location: Cache directory (or backend description).
        reason: What is wrong.
        stage: Stage whose entry is affected, if any.
        key: Partition key of the affected entry, if any.
    """

    location: str
    reason: str
    stage: str | None = None
    key: str | None = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        target = ""
        if self.stage:
            target = f" for stage '{self.stage}'"
            if self.key:
                target += f" [{self.key}]"
        return f"Cache corrupted at {self.location}{target}: {self.reason}. Clear the cache and retry."


@dataclass
class CacheMissError(CacheError):
    """``load`` was called for an entry the manifest does not contain."""

    stage: str
    key: str | None = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        suffix = f" [{self.key}]" if self.key else ""
        return f"No cached artifact for stage '{self.stage}'{suffix}; check has() before load()"

"""Generator protocol and provider error types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class TaskSpec:
    """One generation request.

    Attributes:
        template: Prompt template name (without .yaml).
        variables: Values substituted into the template.
    """

    template: str
    variables: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Generator(Protocol):
    """Turns a task into parsed JSON.

    Implementations own retries, pacing and output repair. Anything they
    cannot recover from is raised as a ``ProviderError``.
    """

    async def invoke(self, task: TaskSpec) -> dict[str, Any] | list[Any]:
        """Run *task* and return the decoded JSON document."""
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class MalformedOutputError(ProviderError):
    """Raised when model output cannot be decoded or fails validation."""

    def __init__(self, provider: str, message: str, raw: str = "") -> None:
        self.raw = raw
        super().__init__(provider, message)

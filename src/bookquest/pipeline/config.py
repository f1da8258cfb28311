"""Run configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from bookquest.pipeline.size import MIN_TARGET_NODES

DEFAULT_PROVIDER = "anthropic"
DEFAULT_TARGET_NODES = 44
DEFAULT_CONCURRENCY = 3
DEFAULT_TEMPERATURE = 0.7
CONFIG_FILE_NAME = "bookquest.yaml"
PROVIDER_ENV_VAR = "BOOKQUEST_PROVIDER"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


@dataclass
class PipelineConfig:
    """Knobs for a single pipeline run.

    Attributes:
        target_node_count: Requested number of story nodes.
        concurrency: Maximum generation calls in flight per fan-out.
        dry_run: Stop after the graph stage and return skeleton nodes.
        verbose: Emit per-batch progress details.
        use_cache: Persist stage artifacts to disk between runs.
        language: Language written into the game metadata.
    """

    target_node_count: int = DEFAULT_TARGET_NODES
    concurrency: int = DEFAULT_CONCURRENCY
    dry_run: bool = False
    verbose: bool = False
    use_cache: bool = True
    language: str = "English"

    def __post_init__(self) -> None:
        if self.target_node_count < MIN_TARGET_NODES:
            raise ValueError(
                f"target_node_count must be at least {MIN_TARGET_NODES}, got {self.target_node_count}"
            )
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        return cls(
            target_node_count=int(data.get("target_node_count", DEFAULT_TARGET_NODES)),
            concurrency=int(data.get("concurrency", DEFAULT_CONCURRENCY)),
            dry_run=bool(data.get("dry_run", False)),
            verbose=bool(data.get("verbose", False)),
            use_cache=bool(data.get("use_cache", True)),
            language=str(data.get("language", "English")),
        )


@dataclass
class ProviderConfig:
    """LLM provider selection.

    ``model`` of None means the provider's default model.
    """

    name: str = DEFAULT_PROVIDER
    model: str | None = None
    temperature: float = DEFAULT_TEMPERATURE

    @classmethod
    def from_spec(cls, spec: str, temperature: float = DEFAULT_TEMPERATURE) -> ProviderConfig:
        """Parse a ``provider/model`` string; the model part is optional."""
        from bookquest.providers.factory import parse_provider_spec

        name, model = parse_provider_spec(spec)
        return cls(name=name, model=model, temperature=temperature)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        temperature = float(data.get("temperature", DEFAULT_TEMPERATURE))
        if "spec" in data:
            return cls.from_spec(str(data["spec"]), temperature)
        return cls(
            name=str(data.get("name", DEFAULT_PROVIDER)).lower(),
            model=data.get("model"),
            temperature=temperature,
        )

    @property
    def spec(self) -> str:
        return f"{self.name}/{self.model}" if self.model else self.name


@dataclass
class BookQuestConfig:
    """Top-level configuration: provider plus pipeline settings."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookQuestConfig:
        """Create config from dictionary.

        ``provider`` may be a mapping or a ``provider/model`` string.
        """
        provider_data = data.get("provider", {})
        if isinstance(provider_data, str):
            provider = ProviderConfig.from_spec(provider_data)
        else:
            provider = ProviderConfig.from_dict(dict(provider_data))
        return cls(provider=provider, pipeline=PipelineConfig.from_dict(dict(data.get("pipeline", {}))))

    def with_env_overrides(self) -> BookQuestConfig:
        """Apply ``BOOKQUEST_PROVIDER`` if set."""
        spec = os.getenv(PROVIDER_ENV_VAR)
        if spec:
            self.provider = ProviderConfig.from_spec(spec, self.provider.temperature)
        return self


def load_config(path: Path | None) -> BookQuestConfig:
    """Load configuration from a YAML file.

    A missing file (or no path) gives the defaults. Environment overrides
    are applied either way.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    if path is None or not path.exists():
        return BookQuestConfig().with_env_overrides()

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise ConfigError(path, str(e)) from e

    if data is None:
        return BookQuestConfig().with_env_overrides()
    if not isinstance(data, dict):
        raise ConfigError(path, "Top level must be a mapping")

    try:
        config = BookQuestConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(path, str(e)) from e
    return config.with_env_overrides()

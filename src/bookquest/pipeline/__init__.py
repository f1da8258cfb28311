"""Pipeline orchestration and stage execution."""

from bookquest.pipeline.config import (
    BookQuestConfig,
    ConfigError,
    PipelineConfig,
    ProviderConfig,
    load_config,
)
from bookquest.pipeline.orchestrator import (
    PROGRESS_STAGES,
    PipelineError,
    PipelineOrchestrator,
    ProgressFn,
    StageResult,
    run_pipeline,
)
from bookquest.pipeline.size import GraphMode, SizeProfile, get_size_profile

__all__ = [
    "PROGRESS_STAGES",
    "BookQuestConfig",
    "ConfigError",
    "GraphMode",
    "PipelineConfig",
    "PipelineError",
    "PipelineOrchestrator",
    "ProgressFn",
    "ProviderConfig",
    "SizeProfile",
    "StageResult",
    "get_size_profile",
    "load_config",
    "run_pipeline",
]

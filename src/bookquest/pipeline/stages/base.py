"""Shared helpers for generation stages.

Every generating stage builds a ``TaskSpec``, hands it to the generator
and validates the returned JSON with a pydantic model. Validation
failures surface as ``MalformedOutputError`` so the caller sees a single
error family for bad model output.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from bookquest.observability.logging import get_logger
from bookquest.providers.base import MalformedOutputError

if TYPE_CHECKING:
    from bookquest.models.summary import PlotBeat
    from bookquest.models.world import WorldData
    from bookquest.providers.base import Generator, TaskSpec

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class StageError(ValueError):
    """Raised when a stage receives output that breaks its contract."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(message)


def provider_label(generator: Generator) -> str:
    return str(getattr(generator, "provider_name", type(generator).__name__))


def _malformed(generator: Generator, task: TaskSpec, e: ValidationError) -> MalformedOutputError:
    log.error("output_validation_failed", template=task.template, errors=e.error_count())
    return MalformedOutputError(
        provider_label(generator),
        f"'{task.template}' output failed validation: {e.errors()[0]['msg']}",
    )


def validate_output(generator: Generator, task: TaskSpec, model_cls: type[M], data: Any) -> M:
    """Validate already-decoded *data* for *task* as *model_cls*."""
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise _malformed(generator, task, e) from e


async def generate_model(generator: Generator, task: TaskSpec, model_cls: type[M]) -> M:
    """Invoke *task* and validate the result as *model_cls*."""
    return validate_output(generator, task, model_cls, await generator.invoke(task))


async def generate_list(generator: Generator, task: TaskSpec, item_cls: type[M], key: str) -> list[M]:
    """Invoke *task* and validate a JSON array of *item_cls*.

    An object wrapping the array under *key* is accepted too.
    """
    data: Any = await generator.invoke(task)
    if isinstance(data, dict) and key in data:
        data = data[key]
    try:
        return TypeAdapter(list[item_cls]).validate_python(data)  # type: ignore[valid-type]
    except ValidationError as e:
        raise _malformed(generator, task, e) from e


# ---------------------------------------------------------------------------
# Prompt text helpers
# ---------------------------------------------------------------------------


def joined(values: Iterable[str], empty: str = "none") -> str:
    text = ", ".join(values)
    return text or empty


def plot_beat_lines(beats: Iterable[PlotBeat], marker: str = "DECISION POINT") -> str:
    lines = [
        f"{b.beat_number}. {b.beat} [{b.location}]" + (f" {marker}" if b.is_decision_point else "")
        for b in beats
    ]
    return "\n".join(lines) or "none"


def world_id_lines(world: WorldData) -> str:
    """Available entity ids, one registry per line."""
    return "\n".join(
        (
            f"Locations: {joined(world.locations)}",
            f"Characters: {joined(world.characters)}",
            f"Objects: {joined(world.objects)}",
            f"Items: {joined(world.items)}",
            f"Variables: {joined(world.variable_definitions)}",
        )
    )

"""Shared pydantic base for records exchanged with the LLM and the engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model whose JSON form uses camelCase keys.

    Python code uses snake_case attributes; LLM responses, cache files and
    the final artifact use camelCase. Either spelling is accepted on input.
    Unknown keys are preserved so engine-specific extras survive a round trip.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump with camelCase keys in JSON-compatible form."""
        return self.model_dump(mode="json", by_alias=True)

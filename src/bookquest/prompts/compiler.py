"""Variable substitution for prompt templates."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bookquest.prompts.loader import PromptTemplate

# {{ variable }} or {{ dotted.path }}
_VAR_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


def _resolve_variable(path: str, context: dict[str, Any]) -> str:
    """Resolve a dotted variable path from context.

    Raises:
        KeyError: If the path cannot be resolved.
    """
    value: Any = context
    for part in path.split("."):
        if isinstance(value, dict):
            if part not in value:
                raise KeyError(f"Key '{part}' not found in context path '{path}'")
            value = value[part]
        elif hasattr(value, part):
            value = getattr(value, part)
        else:
            raise KeyError(f"Cannot resolve '{part}' in context path '{path}'")

    if isinstance(value, (list, dict)):
        return json.dumps(value, indent=2)
    return str(value)


def safe_format(text: str, context: dict[str, Any]) -> str:
    """Substitute ``{{ variable }}`` placeholders, leaving unknown ones as-is.

    Single braces are never touched, so JSON examples inside templates
    survive unchanged.
    """

    def replace_match(match: re.Match[str]) -> str:
        try:
            return _resolve_variable(match.group(1), context)
        except KeyError:
            return match.group(0)

    return _VAR_PATTERN.sub(replace_match, text)


def render_template(template: PromptTemplate, context: dict[str, Any]) -> tuple[str, str]:
    """Return the ``(system, user)`` texts of *template* with *context* applied."""
    return safe_format(template.system, context), safe_format(template.user, context)


def unresolved_variables(text: str, context: dict[str, Any]) -> list[str]:
    """Placeholders in *text* that *context* cannot fill."""
    missing = []
    for match in _VAR_PATTERN.finditer(text):
        try:
            _resolve_variable(match.group(1), context)
        except KeyError:
            missing.append(match.group(1))
    return missing

"""Prompt templates and variable substitution."""

from bookquest.prompts.compiler import render_template, safe_format, unresolved_variables
from bookquest.prompts.loader import (
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
)

__all__ = [
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
    "render_template",
    "safe_format",
    "unresolved_variables",
]

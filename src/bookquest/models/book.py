"""Source book records handed to the pipeline by the text-extraction step."""

from __future__ import annotations

import hashlib
import re

from pydantic import Field

from bookquest.models.base import CamelModel

# Only this much chapter text feeds the fingerprint; enough to tell books apart
FINGERPRINT_SAMPLE_CHARS = 10_000
SUMMARY_MAX_CHARS = 100_000


class BookChapter(CamelModel):
    """One segmented chapter of the source text."""

    id: str = Field(min_length=1)
    number: int = Field(ge=0)
    title: str = ""
    content: str = ""


class Book(CamelModel):
    """A segmented book: metadata plus its chapters in reading order."""

    title: str = Field(min_length=1)
    author: str = "Unknown"
    chapters: list[BookChapter] = Field(min_length=1)

    def fingerprint(self) -> str:
        """Short content digest used to namespace cache directories."""
        joined = "".join(chapter.content for chapter in self.chapters)
        sample = joined[:FINGERPRINT_SAMPLE_CHARS]
        return hashlib.sha256(sample.encode("utf-8")).hexdigest()[:8]

    def safe_title(self, max_length: int = 40) -> str:
        """Title reduced to filesystem-safe characters."""
        return re.sub(r"[^a-zA-Z0-9_-]", "_", self.title)[:max_length]

    def full_text(self, max_chars: int = SUMMARY_MAX_CHARS) -> str:
        """Chapter texts joined with headers, truncated for the summary request."""
        text = "\n\n".join(
            f"--- Chapter {chapter.number}: {chapter.title} ---\n{chapter.content}"
            for chapter in self.chapters
        )
        if len(text) > max_chars:
            return text[:max_chars] + "\n\n[Book continues but is truncated for analysis...]"
        return text

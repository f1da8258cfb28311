"""Summary stage: one call that digests the whole book."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bookquest.models.book import SUMMARY_MAX_CHARS
from bookquest.models.summary import StorySummary
from bookquest.observability.logging import get_logger
from bookquest.pipeline.stages.base import generate_model
from bookquest.providers.base import TaskSpec

if TYPE_CHECKING:
    from bookquest.models.book import Book
    from bookquest.pipeline.size import SizeProfile
    from bookquest.providers.base import Generator

log = get_logger(__name__)


def summary_task(book: Book, profile: SizeProfile) -> TaskSpec:
    return TaskSpec(
        template="summary",
        variables={
            "title": book.title,
            "author": book.author,
            "chapter_count": len(book.chapters),
            "text": book.full_text(SUMMARY_MAX_CHARS),
            "plot_beats": profile.plot_beats,
            "decision_points": profile.decision_points,
        },
    )


async def summarize_book(book: Book, generator: Generator, profile: SizeProfile) -> StorySummary:
    summary = await generate_model(generator, summary_task(book, profile), StorySummary)
    log.info(
        "summary_generated",
        beats=len(summary.plot_progression),
        characters=len(summary.characters),
        locations=len(summary.locations),
    )
    return summary

"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import copy
import os

import pytest

from bookquest.cache import PipelineCache
from bookquest.models.book import Book
from bookquest.models.graph import StoryGraph
from bookquest.models.summary import StorySummary
from bookquest.models.world import WorldData
from tests.fixtures import story_data
from tests.fixtures.fake_generator import ScriptedGenerator, flat_handlers, hierarchical_handlers


@pytest.fixture(autouse=True, scope="session")
def disable_langsmith_tracing() -> None:
    """Disable LangSmith tracing during test runs.

    Set LANGSMITH_TEST_TRACING=true to override for debugging.
    """
    if os.environ.get("LANGSMITH_TEST_TRACING", "").lower() != "true":
        os.environ["LANGSMITH_TRACING"] = "false"


@pytest.fixture
def book() -> Book:
    return story_data.make_book()


@pytest.fixture
def summary() -> StorySummary:
    return StorySummary.model_validate(copy.deepcopy(story_data.SUMMARY))


@pytest.fixture
def world() -> WorldData:
    return WorldData.model_validate(copy.deepcopy(story_data.WORLD))


@pytest.fixture
def flat_graph() -> StoryGraph:
    return StoryGraph.model_validate(copy.deepcopy(story_data.FLAT_GRAPH))


@pytest.fixture
def memory_cache(book: Book) -> PipelineCache:
    return PipelineCache.in_memory(book, 44)


@pytest.fixture
def flat_generator() -> ScriptedGenerator:
    return ScriptedGenerator(flat_handlers())


@pytest.fixture
def hierarchical_generator() -> ScriptedGenerator:
    return ScriptedGenerator(hierarchical_handlers())

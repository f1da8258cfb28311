"""Generation stages: summary, world, graph, content, enrichment."""

from bookquest.pipeline.stages.base import StageError
from bookquest.pipeline.stages.content import assemble_game_data, create_batches, generate_batch
from bookquest.pipeline.stages.enrichment import EnrichmentReport, enrich_game_data
from bookquest.pipeline.stages.graph import (
    generate_acts,
    generate_chapters,
    generate_flat_graph,
    generate_scenes,
)
from bookquest.pipeline.stages.summary import summarize_book
from bookquest.pipeline.stages.world import build_world

__all__ = [
    "EnrichmentReport",
    "StageError",
    "assemble_game_data",
    "build_world",
    "create_batches",
    "enrich_game_data",
    "generate_acts",
    "generate_batch",
    "generate_chapters",
    "generate_flat_graph",
    "generate_scenes",
    "summarize_book",
]

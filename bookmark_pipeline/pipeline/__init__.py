"""Queue-driven orchestration for the ingestion and entity pipelines."""

from bookmark_pipeline.pipeline.dispatcher import (
    BatchDispatcher,
    BatchResult,
    EntityDispatcher,
    IngestionDispatcher,
)
from bookmark_pipeline.pipeline.entity_handlers import EntityEnrichmentHandler, EntityExtractionHandler
from bookmark_pipeline.pipeline.orchestrator import PIPELINE, IngestionPipeline, PipelineStage

__all__ = [
    "BatchDispatcher",
    "BatchResult",
    "EntityDispatcher",
    "EntityEnrichmentHandler",
    "EntityExtractionHandler",
    "IngestionDispatcher",
    "IngestionPipeline",
    "PIPELINE",
    "PipelineStage",
]

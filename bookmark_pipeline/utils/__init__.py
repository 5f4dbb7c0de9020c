"""Utility modules for the bookmark pipeline.

- **errors** -- Domain exception hierarchy rooted at BookmarkPipelineError,
  plus the retryable/permanent classification used by the retry wrapper.
- **concurrency** -- asyncio semaphore throttling for bounded fan-out.
- **logging** -- structlog setup with console output in development and
  JSON in production.
- **retry** -- tenacity-based exponential backoff with jitter and Retry-After support.
- **text_normalizer** -- Entity-name normalization (the dedup key).
- **urls** -- URL helpers.
"""

# -- Domain exception hierarchy --------------------------------------------
from bookmark_pipeline.utils.errors import (
    BookmarkPipelineError,
    CatalogError,
    ConfigurationError,
    EmbeddingError,
    EntityExtractionError,
    FetchError,
    HttpStatusError,
    LLMError,
    PipelineError,
    RateLimitError,
    RepositoryError,
    is_retryable_error,
)

# -- Async concurrency helpers ---------------------------------------------
from bookmark_pipeline.utils.concurrency import map_bounded, throttled_gather

# -- Structured logging setup ----------------------------------------------
from bookmark_pipeline.utils.logging import configure_logging, get_logger

# -- Retry / backoff ---------------------------------------------------------
from bookmark_pipeline.utils.retry import RetryPolicy, parse_retry_after

# -- Entity-name normalization ------------------------------------------------
from bookmark_pipeline.utils.text_normalizer import normalize_entity_name

# -- URL helpers -----------------------------------------------------------
from bookmark_pipeline.utils.urls import hostname

__all__ = [
    "BookmarkPipelineError",
    "CatalogError",
    "ConfigurationError",
    "EmbeddingError",
    "EntityExtractionError",
    "FetchError",
    "HttpStatusError",
    "LLMError",
    "PipelineError",
    "RateLimitError",
    "RepositoryError",
    "RetryPolicy",
    "configure_logging",
    "get_logger",
    "hostname",
    "is_retryable_error",
    "map_bounded",
    "normalize_entity_name",
    "parse_retry_after",
    "throttled_gather",
]

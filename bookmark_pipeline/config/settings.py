"""Application settings loaded from environment variables via pydantic-settings.

Two sources, in priority order:

  1. Environment variables, e.g. ``TMDB_API_KEY=...`` (always win)
  2. ``.env`` file in the working directory (local development)

Field ``tmdb_api_key`` maps to env var ``TMDB_API_KEY``.  Empty strings
mean "not configured"; the factories in ``bookmark_pipeline/main.py``
raise :class:`~bookmark_pipeline.utils.errors.ConfigurationError` when a
required key is missing.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from bookmark_pipeline.models.chunking import ChunkingConfig
from bookmark_pipeline.utils.retry import RetryPolicy


class Settings(BaseSettings):
    """Bookmark pipeline settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM (OpenAI-compatible chat API; OpenRouter by default) ===
    openrouter_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"
    llm_timeout_seconds: float = 60.0

    # === Embeddings ===
    embedding_provider: str = "jina"  # "jina" | "openai"
    jina_api_key: str = ""
    jina_embedding_model: str = "jina-embeddings-v3"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_embedding_model: str = "text-embedding-3-small"

    # === Catalogs ===
    tmdb_api_key: str = ""
    catalog_timeout_seconds: float = 10.0

    # === Fetch ===
    fetch_timeout_seconds: float = 15.0

    # === Persistence ===
    database_path: str = "data/bookmarks.db"

    # === Queue workers ===
    queue_concurrency: int = 2
    enrichment_concurrency: int = 3

    # === Retry ===
    retry_attempts: int = 2
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 30.0

    # === Chunking ===
    chunk_max_tokens: int = 500
    chunk_overlap_tokens: int = 100
    chunk_hard_max_tokens: int = 550
    chunk_min_tokens_for_overlap: int = 250

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def chunking_config(self) -> ChunkingConfig:
        """Build the chunking budgets from the ``chunk_*`` fields."""
        return ChunkingConfig(
            max_tokens=self.chunk_max_tokens,
            overlap_tokens=self.chunk_overlap_tokens,
            hard_max_tokens=self.chunk_hard_max_tokens,
            min_tokens_for_overlap=self.chunk_min_tokens_for_overlap,
        )

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy shared by every provider adapter."""
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
        )

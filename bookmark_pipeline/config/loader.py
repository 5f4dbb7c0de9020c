"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set by the deployment

``load_config()`` reads the YAML file, then deep-merges the values
resolved by :class:`Settings` on top, so a key set in the environment
always wins over the YAML default.
"""

from pathlib import Path

import yaml

from bookmark_pipeline.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read otherwise.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "llm": {
            "base_url": settings.llm_base_url,
            "model": settings.llm_model,
            "configured": bool(settings.openrouter_api_key),
        },
        "embedding": {
            "provider": settings.embedding_provider,
            "jina_model": settings.jina_embedding_model,
            "openai_model": settings.openai_embedding_model,
        },
        "catalog": {
            "tmdb_configured": bool(settings.tmdb_api_key),
        },
        "storage": {
            "database_path": settings.database_path,
        },
        "queue": {
            "concurrency": settings.queue_concurrency,
            "enrichment_concurrency": settings.enrichment_concurrency,
        },
        "retry": {
            "attempts": settings.retry_attempts,
            "base_delay_seconds": settings.retry_base_delay_seconds,
            "max_delay_seconds": settings.retry_max_delay_seconds,
        },
        "chunking": settings.chunking_config().model_dump(),
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value

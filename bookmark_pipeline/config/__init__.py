"""Configuration module -- exports Settings, load_config, and a module-level singleton."""

from bookmark_pipeline.config.loader import load_config
from bookmark_pipeline.config.settings import Settings

settings = Settings()

__all__ = ["Settings", "load_config", "settings"]

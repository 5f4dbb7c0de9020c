"""Bookmark ingestion and entity enrichment pipeline."""

__version__ = "0.1.0"

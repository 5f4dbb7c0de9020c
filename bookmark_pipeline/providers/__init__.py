"""Concrete adapters for the ABCs in ``bookmark_pipeline.interfaces``."""

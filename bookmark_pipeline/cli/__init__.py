# =============================================================================
# bookmark_pipeline/cli/__init__.py -- CLI Module Overview
# =============================================================================
#
# Command-line entry points for running the pipeline locally against the
# SQLite store and the in-process queues:
#
#   init-db   create the database schema
#   config    print the resolved YAML + environment configuration
#   add       save a bookmark and run it through the pipeline
#   worker    resume unfinished bookmarks and drain both queues
#
# Heavy imports (providers, aiosqlite, tiktoken) are deferred inside the
# command handlers so ``--help`` stays fast.
# =============================================================================

"""CLI tools for the bookmark pipeline.

- ``python -m bookmark_pipeline.cli init-db``
- ``python -m bookmark_pipeline.cli add URL --user USER_ID``
- ``python -m bookmark_pipeline.cli worker [--retry-failed] [--user USER_ID ...]``
"""

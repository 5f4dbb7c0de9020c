"""Allow ``python -m bookmark_pipeline.cli`` execution."""

from bookmark_pipeline.cli.worker import main

main()

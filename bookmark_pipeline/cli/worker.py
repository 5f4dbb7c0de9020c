"""Local worker CLI: create the schema, add bookmarks, drain the queues.

Usage::

    python -m bookmark_pipeline.cli init-db

    python -m bookmark_pipeline.cli config

    python -m bookmark_pipeline.cli add https://example.com/post --user u1

    python -m bookmark_pipeline.cli add https://example.com/post --user u1 \\
        --content-file page.md --title "Saved from the browser"

    python -m bookmark_pipeline.cli worker --retry-failed --user u1

Queues live in process memory, so ``add`` and ``worker`` drain both the
ingestion and the entity queue before exiting.  Bookmarks left in an
intermediate status by an earlier run are picked up by ``worker``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from bookmark_pipeline.config.settings import Settings

_RESUMABLE = ("PENDING", "MARKDOWN_READY", "CONTENT_READY", "CHUNKS_READY")


# ---------------------------------------------------------------------------
# Queue draining
# ---------------------------------------------------------------------------


async def drain_queues(components: dict[str, Any], batch_size: int = 10) -> dict[str, int]:
    """Alternate between both queues until neither holds a message.

    Returns the total ``acked`` / ``retried`` / ``invalid`` counts plus
    ``dead_lettered`` for messages that exhausted their attempts.
    """
    routes = (
        (components["ingestion_queue"], components["ingestion_dispatcher"]),
        (components["entity_queue"], components["entity_dispatcher"]),
    )
    totals = {"acked": 0, "retried": 0, "invalid": 0}

    while any(len(queue) for queue, _ in routes):
        for queue, dispatcher in routes:
            batch = queue.receive_batch(batch_size)
            if not batch:
                continue
            result = await dispatcher.process_batch(batch)
            queue.settle(batch)
            totals["acked"] += result.acked
            totals["retried"] += result.retried
            totals["invalid"] += result.invalid

    totals["dead_lettered"] = sum(len(queue.dead_letters) for queue, _ in routes)
    return totals


def _print_totals(totals: dict[str, int]) -> None:
    print("\nQueues drained:")
    print(f"  Acked:          {totals['acked']}")
    print(f"  Retried:        {totals['retried']}")
    print(f"  Invalid:        {totals['invalid']}")
    print(f"  Dead-lettered:  {totals['dead_lettered']}")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_init_db(app_settings: Settings) -> int:
    """Create the database schema."""
    from bookmark_pipeline.main import build_database

    database = build_database(app_settings)
    await database.initialize()
    print(f"Database ready: {database.path}")
    return 0


def _handle_config(args: argparse.Namespace, app_settings: Settings) -> int:
    """Print the resolved configuration as YAML."""
    import yaml

    from bookmark_pipeline.config.loader import load_config

    resolved = load_config(args.path, settings=app_settings)
    print(yaml.safe_dump(resolved, sort_keys=False), end="")
    return 0


async def _handle_add(args: argparse.Namespace, app_settings: Settings) -> int:
    """Save one bookmark and run it through the pipeline."""
    from bookmark_pipeline.main import build_worker, shutdown_worker
    from bookmark_pipeline.models.messages import ExtractedContent, IngestionMessage

    extracted = None
    if args.content_file:
        content = Path(args.content_file).read_text(encoding="utf-8")
        extracted = ExtractedContent(title=args.title or "", content=content)

    components = build_worker(app_settings)
    database = components["database"]
    try:
        await database.initialize()
        async with database.session() as repositories:
            bookmark = await repositories.bookmarks.create(args.user, args.url, args.title)

        print(f"Bookmark {bookmark.id} ({bookmark.status.value}): {bookmark.url}")
        message = IngestionMessage(
            bookmark_id=bookmark.id,
            url=bookmark.url,
            user_id=bookmark.user_id,
            extracted_content=extracted,
        )
        await components["ingestion_queue"].send(message.model_dump(by_alias=True, exclude_none=True))
        totals = await drain_queues(components, batch_size=args.batch_size)

        async with database.session() as repositories:
            final = await repositories.bookmarks.find_by_id(bookmark.id)
    finally:
        await shutdown_worker(components)

    _print_totals(totals)
    if final is None:
        print("Bookmark disappeared during processing", file=sys.stderr)
        return 1
    print(f"\nFinal status: {final.status.value}")
    if final.error_message:
        print(f"  Error: {final.error_message}")
    if final.summary:
        print(f"  Summary: {final.summary}")
    return 0 if final.status.value == "DONE" else 1


async def _handle_worker(args: argparse.Namespace, app_settings: Settings) -> int:
    """Re-enqueue unfinished bookmarks, enqueue enrichment, drain."""
    from bookmark_pipeline.main import build_worker, shutdown_worker
    from bookmark_pipeline.models.bookmark import BookmarkStatus
    from bookmark_pipeline.models.messages import EntityEnrichmentMessage, IngestionMessage

    statuses = [BookmarkStatus(value) for value in _RESUMABLE]
    if args.retry_failed:
        statuses.append(BookmarkStatus.FAILED)

    components = build_worker(app_settings)
    database = components["database"]
    try:
        await database.initialize()
        async with database.session() as repositories:
            resumable = []
            for status in statuses:
                resumable.extend(await repositories.bookmarks.find_by_status(status, limit=args.limit))

        await components["ingestion_queue"].send_batch(
            [
                IngestionMessage(bookmark_id=b.id, url=b.url, user_id=b.user_id).model_dump(
                    by_alias=True, exclude_none=True
                )
                for b in resumable
            ]
        )
        await components["entity_queue"].send_batch(
            [EntityEnrichmentMessage(user_id=user_id).model_dump(by_alias=True) for user_id in args.user]
        )
        print(f"Enqueued {len(resumable)} bookmark(s), {len(args.user)} enrichment run(s)")

        totals = await drain_queues(components, batch_size=args.batch_size)
    finally:
        await shutdown_worker(components)

    _print_totals(totals)
    return 0 if totals["dead_lettered"] == 0 else 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the worker CLI."""
    parser = argparse.ArgumentParser(
        prog="bookmark-pipeline",
        description="Run the bookmark ingestion and entity pipelines locally.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create the SQLite schema")

    config_parser = subparsers.add_parser("config", help="Show the resolved configuration")
    config_parser.add_argument(
        "--path", default="config/config.yaml", help="YAML defaults file (default: config/config.yaml)"
    )

    add_parser = subparsers.add_parser("add", help="Save a bookmark and process it")
    add_parser.add_argument("url", help="Page URL")
    add_parser.add_argument("--user", required=True, help="Owning user id")
    add_parser.add_argument("--title", default=None, help="Bookmark title")
    add_parser.add_argument(
        "--content-file",
        default=None,
        help="Markdown captured elsewhere; skips fetching the URL",
    )
    add_parser.add_argument("--batch-size", type=int, default=10, help="Messages per batch")

    worker_parser = subparsers.add_parser("worker", help="Resume unfinished bookmarks and drain queues")
    worker_parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Also restart FAILED bookmarks from the fetch stage",
    )
    worker_parser.add_argument(
        "--user",
        action="append",
        default=[],
        help="Enqueue entity enrichment for this user (repeatable)",
    )
    worker_parser.add_argument("--limit", type=int, default=100, help="Bookmarks per status")
    worker_parser.add_argument("--batch-size", type=int, default=10, help="Messages per batch")

    return parser


def main() -> None:
    """CLI entry point.

    ``init-db`` only needs the database path; ``add`` and ``worker``
    build the full worker and therefore need the LLM and embedding keys.
    """
    parser = _build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    from bookmark_pipeline.utils.errors import ConfigurationError
    from bookmark_pipeline.utils.logging import configure_logging

    app_settings = Settings()
    configure_logging(log_level=args.log_level or app_settings.log_level, json_output=args.json_logs)

    try:
        if args.command == "init-db":
            exit_code = asyncio.run(_handle_init_db(app_settings))
        elif args.command == "config":
            exit_code = _handle_config(args, app_settings)
        elif args.command == "add":
            exit_code = asyncio.run(_handle_add(args, app_settings))
        elif args.command == "worker":
            exit_code = asyncio.run(_handle_worker(args, app_settings))
        else:
            parser.print_help()
            exit_code = 1
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()

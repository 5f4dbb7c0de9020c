"""structlog setup for the bookmark workers.

Console rendering for local runs, one JSON object per line when
``APP_ENV=production`` or ``--json-logs`` is passed.  Log lines go to
stderr so ``cli config`` can print YAML on stdout untouched.

The dispatcher binds ``message_id`` / ``attempt`` and the message's
identifiers (``bookmark_id``, ``user_id``) with
:func:`structlog.contextvars.bound_contextvars`; ``merge_contextvars``
runs first in the chain so every event emitted while a message is being
handled carries them.

Records from the standard library (httpx, openai, aiosqlite, trafilatura)
are routed through the same processors.
"""

import logging
import os
import sys

import structlog

# Third-party loggers that are chatty at INFO (httpx logs every request).
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "trafilatura")


def _processor_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _select_renderer(json_output: bool) -> structlog.types.Processor:
    if json_output or os.environ.get("APP_ENV", "development") == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Emit JSON lines even outside production.

    Returns:
        The root structlog logger.
    """
    level = logging.getLevelName(log_level.upper())
    processors = _processor_chain()
    renderer = _select_renderer(json_output)

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    stdlib_handler = logging.StreamHandler(sys.stderr)
    stdlib_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *processors,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [stdlib_handler]
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger bound with ``logger_name=name``, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging(log_level=os.environ.get("LOG_LEVEL", "INFO"))
    return structlog.get_logger(logger_name=name)

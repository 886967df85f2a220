"""LoomGraph structured logging — configures structlog for the entire application."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from loomgraph.config import LogFormat, LoomGraphConfig

# Third-party loggers that are clamped to WARNING unless the app runs quieter.
_NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "httpx", "httpcore", "anthropic", "openai")


def configure_logging(config: LoomGraphConfig) -> None:
    """Configure structlog and stdlib logging from LoomGraph config.

    Call once at startup (LoomGraph.start() or the CLI). After this, any
    module can do:

        from loomgraph.logging import get_logger
        log = get_logger("reconcile")
        log.info("reconcile.run_complete", rows=20, relationships=41)

    Args:
        config: LoomGraph configuration (log_level, log_format).
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=False),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if config.log_format == LogFormat.JSON:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally bound to a component name.

    Args:
        name: Component name (e.g. "reconcile", "reader"). Added as 'component' key.

    Returns:
        A bound structlog logger.
    """
    log = structlog.get_logger()
    if name:
        log = log.bind(component=name)
    return log


@contextmanager
def bound_context(**values: Any) -> Iterator[None]:
    """Bind key/values to every log line emitted inside the block.

    Used to tag all records of one ingestion run with its document id.
    Context variables are task-local, so concurrent runs don't mix tags.
    """
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)

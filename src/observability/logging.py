"""
Logging setup for the compliance engine.

The scheduled jobs run unattended, so their logs are the primary record
of what was scanned, throttled, notified and pruned. Both structlog
loggers (jobs) and stdlib loggers (library modules) are rendered by the
same structlog pipeline: JSON lines in production, a colored console
otherwise. Logs go to stderr so command output on stdout stays parseable.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore", "asyncio")

_handler: logging.Handler | None = None


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and route stdlib logging through it.

    Args:
        level: Override for the configured log level (e.g. "DEBUG").
    """
    settings = get_settings()
    level = level or settings.log_level

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.is_production:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=pre_chain + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    root.addHandler(_handler)
    root.setLevel(getattr(logging, level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind key/value pairs to every log line of the current task (e.g. run_id)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()

"""structlog setup for processes that embed the allocator.

Allocator events go to stderr so that CLI output on stdout stays parseable.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from tunnel_ports.config import PortAllocatorSettings


def setup_logging(
    settings: PortAllocatorSettings | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structured logging from allocator settings.

    Args:
        settings: Source of service name, log format and level. Read from the
                  environment when omitted.
        log_level: Overrides ``settings.log_level`` (the CLI stays at WARNING
                   unless asked to be verbose).
    """
    settings = settings or PortAllocatorSettings()
    level_name = (log_level or settings.log_level).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        # service and port_range come from contextvars
        structlog.contextvars.merge_contextvars,
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=settings.service_name)
    structlog.get_logger(__name__).debug(
        "logging_initialized", log_format=settings.log_format, log_level=level_name
    )


def bind_port_range(start: int, end: int) -> None:
    """Tag every following log entry with the range being served."""
    structlog.contextvars.bind_contextvars(port_range=f"{start}-{end}")

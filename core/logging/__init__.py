# Structured logging for the Cosmos client
import sys
import logging
import structlog
from typing import Optional

from core.config.settings import Settings
from .correlation import CorrelationIdManager, correlation_scope
from .processors import (
    add_correlation_id,
    make_redactor,
    make_standard_context,
    normalize_error,
)

# Global flag to prevent duplicate logging configuration
_logging_configured = False


def configure_logging(settings: Settings, force: bool = False) -> None:
    """Configure stdlib logging and structlog from settings.

    Console output is rendered by structlog's ProcessorFormatter so that
    records from third-party libraries (httpx, redis) share the same format.
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    foreign_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    console_processor = (
        structlog.processors.JSONRenderer()
        if settings.logging.console_json_format
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=console_processor,
            foreign_pre_chain=foreign_chain,
        )
    )

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_cosmos_handler", False):
            root_logger.removeHandler(existing)
    handler._cosmos_handler = True
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    processors = [
        add_correlation_id,
        make_standard_context(settings),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        normalize_error,
        structlog.processors.UnicodeDecoder(),
        make_redactor(settings.logging.redact_keys),
        # Defer final rendering to handlers via ProcessorFormatter
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    The result is a lazy proxy: module-level loggers pick up whatever
    configure_logging() installs later.
    """
    if component:
        return structlog.get_logger(name, component=component)
    return structlog.get_logger(name)


__all__ = [
    "configure_logging",
    "get_logger",
    "CorrelationIdManager",
    "correlation_scope",
]

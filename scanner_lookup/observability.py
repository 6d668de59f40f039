from __future__ import annotations

import logging
import sys

import structlog
from structlog import dev

from .config import Settings

_LOGGING_CONFIGURED = False
_SENTRY_CONFIGURED = False

_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)


def build_formatter(json_logs: bool) -> structlog.stdlib.ProcessorFormatter:
    """Formatter for stdlib records emitted by the lookup engine.

    Records pick up the ``operation`` bound by the resolution service and any
    ``extra=`` fields (elapsed time, outcome, redacted key).
    """
    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            sort_keys=True
        )
    else:
        renderer = dev.ConsoleRenderer(colors=False)

    return structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ExtraAdder(),
            _TIMESTAMPER,
        ],
    )


def configure_logging(json_logs: bool, level: str = "INFO") -> None:
    """Configure structlog-backed logging with optional JSON output."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _TIMESTAMPER,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(json_logs))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # SQL echo stays off unless explicitly requested via LOG_LEVEL=DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if log_level <= logging.DEBUG else logging.WARNING
    )

    _LOGGING_CONFIGURED = True


def init_sentry(settings: Settings) -> None:
    """Initialise Sentry, capturing breadcrumbs from logging if configured."""
    global _SENTRY_CONFIGURED
    if _SENTRY_CONFIGURED:
        return

    dsn = getattr(settings, "sentry_dsn", None)
    if not dsn:
        return

    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_logging = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        integrations=[sentry_logging],
        send_default_pii=False,
    )

    _SENTRY_CONFIGURED = True

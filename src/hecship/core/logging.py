# src/hecship/core/logging.py
"""Structured logging configuration for hecship.

structlog and stdlib logging share one processor chain: stdlib records are
routed through structlog's ProcessorFormatter, so httpx warnings and the
exporter's own events come out in the same format (console or JSON).

Every event passes through a redaction step first. The HEC token travels
in settings objects and Authorization headers; neither may reach a log
line intact, whoever logged it.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Third-party loggers that log every request/connection at DEBUG level.
# A flush cycle issues one POST per event, so these drown out the
# exporter's own output.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "httpcore.connection",
    "httpcore.http11",
)

# Event keys whose values are credentials (compared lower-cased)
_SECRET_KEYS = frozenset({"hec_token", "hectoken", "splunk.hectoken", "token", "authorization"})

_REDACTED = "****"


def _redact_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _REDACTED if str(k).lower() in _SECRET_KEYS else _redact_value(v) for k, v in value.items()}
    if isinstance(value, str) and value.startswith("Splunk "):
        return f"Splunk {_REDACTED}"
    return value


def redact_secrets(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask HEC tokens in event context.

    Keys named like a token are replaced outright; nested mappings (e.g. a
    headers dict) are searched; ``Splunk <token>`` header values lose the
    token.
    """
    for key, value in event_dict.items():
        if key == "event":
            continue
        event_dict[key] = _REDACTED if key.lower() in _SECRET_KEYS else _redact_value(value)
    return event_dict


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove internal structlog fields from output.

    ProcessorFormatter always adds _record and _from_structlog when
    processing log records.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging.

    Output goes to stderr so command output on stdout stays parseable.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: One of LOG_LEVELS (case-insensitive).

    Raises:
        ValueError: If level is not a known log level.
    """
    if level.upper() not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {level!r}, expected one of {', '.join(LOG_LEVELS)}")
    log_level = logging.getLevelName(level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Disable caching so tests can reconfigure logging
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module (typically ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger

"""Structured logging for the gateway.

structlog renders every event; stdlib logging only carries the rendered
line to stdout and the optional LOG_FILE. Credentials never reach a handler:
``redact_credentials`` runs just before rendering and shortens API keys,
bearer tokens and admin secrets wherever they appear as event fields,
including ``apikey:<id>`` cache keys.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from constants import CACHE_KEY_LOG_FIELDS, SENSITIVE_KEY_PREFIXES, SENSITIVE_LOG_FIELDS
from core.config import Settings

# Chatty at INFO: access lines, event loop notices, readability's scoring
_QUIET_LOGGERS = ("uvicorn.access", "asyncio", "readability.readability")


def redact(secret: Optional[str], keep: int = 6) -> str:
    """Shorten a credential for log output."""
    if not secret:
        return ""
    return secret[:keep] + "..." if len(secret) > keep else "***"


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor that shortens credential values in place."""
    for field in SENSITIVE_LOG_FIELDS.intersection(event_dict):
        if isinstance(event_dict[field], str):
            event_dict[field] = redact(event_dict[field])

    for field in CACHE_KEY_LOG_FIELDS.intersection(event_dict):
        value = event_dict[field]
        if not isinstance(value, str):
            continue
        for prefix in SENSITIVE_KEY_PREFIXES:
            if value.startswith(prefix):
                event_dict[field] = prefix + redact(value[len(prefix):])
                break
    return event_dict


def _handlers(settings: Settings) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def _renderer(settings: Settings):
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=False,
        pad_event=35,
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging at LOG_LEVEL in LOG_FORMAT."""
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        handlers=_handlers(settings),
        format="%(message)s",
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso" if settings.log_format == "json" else "%H:%M:%S"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_credentials,
            _renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_execution_time(logger: structlog.stdlib.BoundLogger, operation: str,
                       start_time: float, end_time: float, **kwargs) -> None:
    """One INFO line with the wall time of ``operation``."""
    logger.info(
        "Operation completed",
        operation=operation,
        execution_time_seconds=round(end_time - start_time, 4),
        **kwargs
    )


def log_cache_operation(logger: structlog.stdlib.BoundLogger, operation: str,
                        key: str, **kwargs) -> None:
    """DEBUG line per cache call; ``cache_key`` is redacted by the processor chain."""
    logger.debug("Cache operation", operation=operation, cache_key=key, **kwargs)

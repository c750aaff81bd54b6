"""
Central logging configuration for happenings_engine.

Keeps engine modules at INFO (DEBUG when requested) while quieting the
aiohttp access loggers, which log every request.
"""

import logging
import os
from typing import Optional


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records for request tracing."""

    def filter(self, record: logging.LogRecord) -> bool:
        from happenings_engine.api.middleware import get_request_id

        record.request_id = get_request_id()
        return True


# Loggers that follow the engine debug switch; children inherit from the package logger
ENGINE_LOGGERS = ("happenings_engine", "happenings_engine.api", "happenings_engine.domain")

_LIBRARY_LEVELS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "asyncio": logging.WARNING,
}


def _resolve_debug(debug_mode: bool, force_debug: Optional[bool]) -> bool:
    if force_debug is not None:
        return force_debug
    return debug_mode or os.getenv("HAPPENINGS_DEBUG", "").lower() in ("1", "true", "yes")


def configure_engine_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for happenings_engine.

    Args:
        debug_mode: Whether to enable debug logging for happenings_engine modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        HAPPENINGS_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        HAPPENINGS_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    final_debug = _resolve_debug(debug_mode, force_debug)
    env_log_level = os.getenv("HAPPENINGS_LOG_LEVEL", "").upper()

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    # Preserve handlers installed by _init_logging (colorized console output)
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    for logger_name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(logger_name).setLevel(level)

    engine_level = logging.DEBUG if final_debug else logging.INFO
    for logger_name in ENGINE_LOGGERS:
        logging.getLogger(logger_name).setLevel(engine_level)

    logging.getLogger(__name__).debug(
        "Engine logging configured: root=%s debug=%s",
        logging.getLevelName(root_level),
        final_debug,
    )

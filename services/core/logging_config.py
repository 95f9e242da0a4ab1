"""
Centralized Logging Configuration for the Trust Engine

Structured logging through structlog. Every module does:

    from logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("trust_promoted", website_id=..., from_level=1, to_level=2)

Environment:
    LOG_LEVEL  - DEBUG, INFO, WARNING, ERROR (default INFO)
    LOG_JSON   - "1" / "true" for JSON output (production)
    LOG_FILE   - optional file path
"""

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False
) -> None:
    """
    Configure centralized logging for the whole service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logs
        json_logs: Use JSON format for production (better parsing)
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str | None = None) -> Any:
    """
    Get a logger instance.

    Usage:
        from logging_config import get_logger

        logger = get_logger(__name__)
        logger.info("trust_outcome_recorded", website_id=website_id, outcome="success")
    """
    return structlog.get_logger(name)


# Convenience functions for common patterns
_TRANSITION_EVENTS = {
    "promotion": "trust_promoted",
    "demotion": "trust_demoted",
    "admin_override": "trust_admin_override",
}


def log_trust_transition(
    website_id: str,
    action_category: str,
    from_level: int,
    to_level: int,
    kind: str,
    actor: str,
    reason: str
) -> None:
    """Log a trust level change with structured data"""
    logger = get_logger("trust_transition")
    log_func = logger.warning if kind == "admin_override" else logger.info
    log_func(
        _TRANSITION_EVENTS.get(kind, "trust_level_changed"),
        website_id=website_id,
        action_category=action_category,
        from_level=from_level,
        to_level=to_level,
        actor=actor,
        reason=reason,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


def log_error(
    error: Exception,
    context: dict | None = None,
    level: str = "ERROR",
    event: str = "error_occurred"
) -> None:
    """Log error with full context and stack trace"""
    logger = get_logger("error_handler")
    log_func = getattr(logger, level.lower(), logger.error)

    log_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if context:
        log_data.update(context)

    log_func(event, **log_data, exc_info=error)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


# Auto-setup on import
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    json_logs=_env_flag("LOG_JSON")
)

#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the streaming client with:
- Stream ID correlation (every log line of one stream shares an ID)
- Stage numbering for the session lifecycle
- JSON formatting for log aggregation
- Redaction of identities and secrets that travel in request headers

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- ContextVar based correlation is safe across asyncio tasks
- JSON output for log aggregation

Author: System Architect
Date: 2025-12-05
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from eco_stream.core.config.settings import get_settings

# Context variable for the stream correlation ID (per asyncio task)
stream_id_ctx: ContextVar[str | None] = ContextVar("stream_id", default=None)

_EMAIL_RE = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_BEARER_RE = re.compile(r"\bBearer\s+[A-Za-z0-9._\-]+", re.IGNORECASE)
_API_KEY_RE = re.compile(r"\bsk-[a-zA-Z0-9]+\b")
_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


def add_stream_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add stream ID to log event from context variable.

    STAGE-L.1: Stream ID injection
    """
    stream_id = stream_id_ctx.get()
    if stream_id and "stream_id" not in event_dict:
        event_dict["stream_id"] = stream_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_sensitive(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact sensitive values from log messages.

    STAGE-L.3: Redaction

    Patterns redacted:
    - Email addresses → [EMAIL]
    - Bearer tokens and API keys → [REDACTED]
    - Phone numbers → [PHONE]
    """
    message = event_dict.get("event", "")

    if isinstance(message, str):
        message = _EMAIL_RE.sub("[EMAIL]", message)
        message = _BEARER_RE.sub("Bearer [REDACTED]", message)
        message = _API_KEY_RE.sub("[REDACTED]", message)
        message = _PHONE_RE.sub("[PHONE]", message)
        event_dict["event"] = message

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add log level name to event dict.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')

    Applications embedding the client call this once at startup. Without it
    structlog falls back to its default development configuration.
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_stream_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_sensitive,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="3.0")
    """
    return structlog.get_logger(name)


def set_stream_id(stream_id: str | None) -> None:
    """
    Set the stream ID in context for the current task.

    STAGE-1.1: Correlation context initialization
    """
    stream_id_ctx.set(stream_id)


def get_stream_id() -> str | None:
    """Get current stream ID from context."""
    return stream_id_ctx.get()


def clear_stream_id() -> None:
    """
    Clear stream ID from context.

    STAGE-6: Correlation context cleanup
    """
    stream_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Args:
        logger: Logger instance
        stage: Stage identifier (e.g., Stage.WATCHDOG or "3.0")
        message: Log message
        level: Log level (debug, info, warning, error, critical)
        **kwargs: Additional fields to log

    Usage:
        log_stage(logger, Stage.FALLBACK, "Guard fired", guard_ms=15000)
    """
    if hasattr(stage, "value"):
        stage = stage.value
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)

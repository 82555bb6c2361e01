"""Structured logging configuration for the AI Mediator.

This module configures structured JSON logging for production environments and
human-readable format for local development.

Environment Variables:
    LOG_FORMAT: Set to "json" for JSON output, anything else for human-readable.
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
"""

import copy
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import jsonlogger

# Context variables for request-scoped data
_mediation_key: ContextVar[str | None] = ContextVar("mediation_key", default=None)
_current_user: ContextVar[int | None] = ContextVar("current_user", default=None)

# Environment configuration
LOG_FORMAT = os.getenv("LOG_FORMAT", "").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_mediation_key() -> str | None:
    """Get the joint key of the mediation being worked on."""
    return _mediation_key.get()


def set_mediation_key(joint_key: str | None) -> None:
    """Set the mediation joint key in context."""
    _mediation_key.set(joint_key)


def get_current_user() -> int | None:
    """Get the current user id from context."""
    return _current_user.get()


def set_current_user(user_id: int | None) -> None:
    """Set the current user id in context."""
    _current_user.set(user_id)


@contextmanager
def mediation_context(joint_key: str, user_id: int | None = None) -> Iterator[None]:
    """Tag log lines emitted inside the block with a mediation and user."""
    key_token = _mediation_key.set(joint_key)
    user_token = _current_user.set(user_id) if user_id is not None else None
    try:
        yield
    finally:
        if user_token is not None:
            _current_user.reset(user_token)
        _mediation_key.reset(key_token)


class ContextAwareJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that includes mediation key and user info."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add standard fields and context to log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["message"] = record.getMessage()

        mediation_key = get_mediation_key()
        if mediation_key:
            log_record["mediation"] = mediation_key

        current_user = get_current_user()
        if current_user is not None:
            log_record["user"] = current_user


class ContextAwareFormatter(logging.Formatter):
    """Human-readable formatter that includes mediation key and user info."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with context information."""
        record = copy.copy(record)

        context_parts = []

        mediation_key = get_mediation_key()
        if mediation_key:
            context_parts.append(f"[{mediation_key}]")

        current_user = get_current_user()
        if current_user is not None:
            context_parts.append(f"[user {current_user}]")

        context_prefix = " ".join(context_parts)
        if context_prefix:
            context_prefix += " "

        # Prepend context to message (on copy, not original)
        original_msg = record.getMessage()
        record.msg = f"{context_prefix}{original_msg}"
        record.args = ()

        return super().format(record)


def setup_logging() -> None:
    """Configure structured logging based on environment.

    Call this function once at application startup before any logging occurs.
    Uses LOG_FORMAT=json for JSON output, otherwise human-readable format.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if LOG_FORMAT == "json":
        formatter = ContextAwareJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    else:
        formatter = ContextAwareFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured. Format: %s, Level: %s",
        "json" if LOG_FORMAT == "json" else "human-readable",
        LOG_LEVEL,
    )

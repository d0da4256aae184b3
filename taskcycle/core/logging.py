"""Logging and observability configuration using Pydantic Logfire.

All modules use Python's standard logging library (logging.getLogger(__name__));
Logfire captures and enriches these records once configured.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})

Structured logging utilities:
    log_with_context(logger, "info", "Message", group_id="g1", task_id="abc")
"""

import logging

import logfire

from taskcycle.core.config import settings


def configure_logfire(*, environment: str = "production") -> None:
    """Configure Pydantic Logfire with the token from the environment.

    Nothing is sent unless a token is configured, so hosts and tests can call
    this unconditionally.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="taskcycle",
        service_version="0.1.0",
        environment=environment,
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Create a custom span around an engine operation.

    Usage:
        with span("controller.reconcile", group_id=group_id):
            ...
    """
    return logfire.span(name, **attributes)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (group_id, task_id, user_id, ...)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_id: str | None = None,
    **extra: object,
) -> None:
    """Log a message with task context.

    Usage:
        log_with_task_context(logger, "info", "Task reset", task_id="abc", group_id="g1")
    """
    context = {"task_id": task_id, **extra} if task_id else extra
    log_with_context(logger, level, message, **context)

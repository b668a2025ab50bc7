"""Structured logging configuration for the Continuity Conductor."""

import json
import logging
import time
import uuid
from typing import Callable, Optional
from contextvars import ContextVar
from functools import wraps

# Context variable for operation tracking
operation_id_var: ContextVar[str] = ContextVar('operation_id', default='')


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation_id": operation_id_var.get(''),
        }

        # Add extra fields
        if hasattr(record, 'duration_ms'):
            log_data['duration_ms'] = record.duration_ms
        if hasattr(record, 'operation'):
            log_data['operation'] = record.operation
        if hasattr(record, 'collaborator'):
            log_data['collaborator'] = record.collaborator

        return json.dumps(log_data)


def configure_logging(level: str = "INFO", stream=None) -> logging.Handler:
    """Attach a structured handler to the package logger and return it."""
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    package_logger = logging.getLogger("continuity_conductor")
    package_logger.setLevel(level.upper())
    package_logger.addHandler(handler)
    return handler


def with_operation_id(func: Callable) -> Callable:
    """Decorator to tag host operations with an operation id and duration."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        operation_id = str(uuid.uuid4())[:8]
        token = operation_id_var.set(operation_id)
        start = time.perf_counter()

        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger = logging.getLogger(func.__module__)
            logger.info(
                "Operation completed",
                extra={'duration_ms': round(duration_ms, 2), 'operation': func.__name__}
            )
            operation_id_var.reset(token)

    return wrapper


def current_operation_id() -> Optional[str]:
    """Return the active operation id, if any."""
    return operation_id_var.get('') or None

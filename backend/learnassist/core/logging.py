"""
Structured logging for the orchestration service.

Every log entry carries:
- timestamp (ISO 8601)
- level
- service
- trace_id / request_id (per HTTP request)
- user_id / session_id (when the orchestration cycle has bound them)
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)

SERVICE_NAME = "learnassist_orchestrator"

_CONTEXT_FIELDS = (
    ("trace_id", trace_id_var),
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("session_id", session_id_var),
)


def add_request_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    """Copy request-scoped context variables into the event."""
    for field_name, var in _CONTEXT_FIELDS:
        value = var.get()
        if value and field_name not in event_dict:
            event_dict[field_name] = value

    event_dict["service"] = SERVICE_NAME
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: Overrides SERVICE_NAME when given
        json_output: JSON lines for containers, console renderer for local dev
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Return a structlog logger, typically named after the calling module."""
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_user_id(user_id: Optional[str]) -> None:
    user_id_var.set(user_id)


def get_user_id() -> Optional[str]:
    return user_id_var.get()


def set_session_id(session_id: Optional[str]) -> None:
    session_id_var.set(session_id)


def get_session_id() -> Optional[str]:
    return session_id_var.get()


def generate_request_id() -> str:
    """New UUID4 request id."""
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """New UUID4 trace id."""
    return str(uuid.uuid4())

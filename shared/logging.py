"""
Structured JSON logging for the Transaction Proxy.

Every log line carries the service name and whatever is bound to the current
context: the request id from the HTTP middleware and the query window bound by
the transaction pipeline. Background cache writes inherit the context of the
request that dispatched them.
"""

import logging
import sys
import uuid
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars, merge_contextvars


def _service_name_processor(service_name: str):
    def add_service_name(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return add_service_name


def _resolve_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for one service."""
    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _service_name_processor(service_name),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=_resolve_level(log_level),
    )


def bind_request(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when missing) to the current context."""
    if not request_id:
        request_id = str(uuid.uuid4())
    bind_contextvars(request_id=request_id)
    return request_id


def current_request_id() -> Optional[str]:
    return get_contextvars().get("request_id")


def bind_query(**fields: Any) -> None:
    """Attach query fields to every log line for the rest of the request."""
    bind_contextvars(**fields)


def clear_context():
    clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)

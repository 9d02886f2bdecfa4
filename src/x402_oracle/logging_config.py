"""
Structured JSON logging for the oracle and the paying agent.

Every record carries the request id of the HTTP request being served (when
there is one) and the active trace/span ids, so a payment can be followed
from the 402 through verification in both logs and traces. Wallet secrets
passed as log fields are masked before rendering.
"""

import logging
from collections.abc import MutableMapping
from contextvars import ContextVar
from typing import Any

import structlog
from opentelemetry.trace import get_current_span

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

SECRET_FIELDS = frozenset({"private_key", "secret_key", "keypair"})
MASK = "***"


def configure_logging(level: str = "info") -> None:
    """Configure structlog to output JSON format for structured logging."""
    min_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_otel_context,
            mask_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def add_otel_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    span = get_current_span()
    if span.is_recording():
        span_context = span.get_span_context()
        if span_context and span_context.is_valid:
            event_dict["trace_id"] = format(span_context.trace_id, "032x")
            event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def mask_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace wallet key material with a fixed mask."""
    for field in SECRET_FIELDS.intersection(event_dict):
        if event_dict[field]:
            event_dict[field] = MASK
    return event_dict


def get_logger(name: str | None = None) -> Any:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger


def bind_request_id(request_id: str) -> None:
    """Correlate all log records and verification spans with this request."""
    request_id_ctx.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_context() -> None:
    request_id_ctx.set(None)
    structlog.contextvars.clear_contextvars()


def get_current_request_id() -> str | None:
    """Request id of the HTTP request being served, None outside one."""
    return request_id_ctx.get()

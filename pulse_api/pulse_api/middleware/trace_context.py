"""W3C ``traceparent`` propagation.

An upstream trace id is kept when the header is valid, otherwise a new one
is generated; every request gets a fresh span id.  Both ids go on
``request.state`` and into context variables read by
:class:`TraceLoggingFilter`.  Responses carry ``X-Trace-ID`` and a
``traceparent`` naming this service's span.
"""

from __future__ import annotations

import contextvars
import logging
import re
import secrets

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("pulse_trace_id", default="")
_span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("pulse_span_id", default="")

_TRACEPARENT = re.compile(r"(?P<version>[0-9a-f]{2})-(?P<trace>[0-9a-f]{32})-(?P<parent>[0-9a-f]{16})-[0-9a-f]{2}")
_ZERO_TRACE = "0" * 32
_ZERO_SPAN = "0" * 16


def get_trace_id() -> str:
    """Trace id of the request being served, ``""`` outside one."""
    return _trace_id_var.get()


def parse_traceparent(header: str) -> str:
    """Trace id carried by *header*, or ``""`` when it is absent or malformed."""
    match = _TRACEPARENT.fullmatch(header.strip().lower())
    if match is None:
        return ""
    if match["version"] == "ff" or match["trace"] == _ZERO_TRACE or match["parent"] == _ZERO_SPAN:
        logger.debug("Discarding traceparent %r", header)
        return ""
    return match["trace"]


def format_traceparent(trace_id: str, span_id: str) -> str:
    return f"00-{trace_id}-{span_id}-01"


class TraceContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = parse_traceparent(request.headers.get("traceparent", "")) or secrets.token_hex(16)
        span_id = secrets.token_hex(8)
        request.state.trace_id = trace_id
        request.state.span_id = span_id

        trace_token = _trace_id_var.set(trace_id)
        span_token = _span_id_var.set(span_id)
        try:
            response = await call_next(request)
        finally:
            _trace_id_var.reset(trace_token)
            _span_id_var.reset(span_token)

        response.headers["X-Trace-ID"] = trace_id
        response.headers["traceparent"] = format_traceparent(trace_id, span_id)
        return response


class TraceLoggingFilter(logging.Filter):
    """Stamp ``trace_id`` and ``span_id`` onto each record it sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()  # type: ignore[attr-defined]
        record.span_id = _span_id_var.get()  # type: ignore[attr-defined]
        return True

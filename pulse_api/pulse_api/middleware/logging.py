"""One access-log line per request.

The line carries the route, masked query string, status, latency, the
correlation and trace ids, and the tenant when a handler resolved one
(``request.state.tenant_id``).  Admin secrets, session cookies and webhook
signatures never reach the log.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any
from urllib.parse import parse_qsl, urlencode

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("pulse_api.access")

CORRELATION_HEADER = "X-Correlation-ID"

_MASK = "***"
_MASKED_PARAMS = frozenset({"secret", "token", "access_token"})
_LOGGED_HEADERS = ("user-agent", "content-type", "content-length")


def _safe_query(query: str) -> str | None:
    """*query* with the values of credential-bearing parameters masked."""
    if not query:
        return None
    masked = [
        (name, _MASK if name.lower() in _MASKED_PARAMS else value)
        for name, value in parse_qsl(query, keep_blank_values=True)
    ]
    return urlencode(masked, safe="*")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access logging plus ``X-Correlation-ID`` propagation (taken from the request or generated)."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        status_code = 500
        started = time.perf_counter()
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            entry: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "query": _safe_query(request.url.query),
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "trace_id": getattr(request.state, "trace_id", ""),
                "tenant_id": getattr(request.state, "tenant_id", None),
                "headers": {name: request.headers[name] for name in _LOGGED_HEADERS if name in request.headers},
            }
            logger.log(
                _level_for(status_code),
                "%s %s -> %d",
                request.method,
                request.url.path,
                status_code,
                extra={"request": entry},
            )

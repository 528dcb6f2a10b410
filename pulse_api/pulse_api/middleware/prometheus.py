"""HTTP and pipeline metrics for the Prometheus scrape endpoint.

HTTP series are labelled with the matched route template where FastAPI
provides one; unmatched paths fall back to :func:`_normalise_path` so a
scan of random tenant ids cannot blow up label cardinality.

The pipeline counters are incremented by the webhook router and by the
event-bus handlers in :mod:`pulse_api.services.event_handlers`.
"""

from __future__ import annotations

import re
import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

HTTP_REQUESTS_TOTAL = Counter(
    "pulse_http_requests_total",
    "HTTP requests by method, route and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "pulse_http_request_duration_seconds",
    "HTTP request latency by method and route",
    ["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0),
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "pulse_http_requests_in_flight",
    "Requests currently being served",
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "pulse_webhook_events_total",
    "Provider webhook deliveries by event name and outcome",
    ["event", "status"],
)

INGEST_TENANTS_TOTAL = Counter(
    "pulse_ingest_tenants_total",
    "Tenants processed by the daily ingestion run, by outcome",
    ["outcome"],
)

BACKFILL_DAYS_TOTAL = Counter(
    "pulse_backfill_days_total",
    "Historical days processed by backfills, by outcome",
    ["outcome"],
)

_TENANT_SEGMENT = re.compile(r"/tenants/(?!resolve(?:/|$))[^/]+")
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")

_UNTRACKED: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


def _normalise_path(path: str) -> str:
    """Replace tenant ids and numeric segments with ``{id}``."""
    path = _TENANT_SEGMENT.sub("/tenants/{id}", path)
    return _NUMERIC_SEGMENT.sub("/{id}", path)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path_format", None)
    if isinstance(template, str):
        return template
    return _normalise_path(request.url.path)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _UNTRACKED:
            return await call_next(request)

        status_code = 500
        started = time.perf_counter()
        HTTP_REQUESTS_IN_FLIGHT.inc()
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()
            label = _route_label(request)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, path=label, status_code=str(status_code)).inc()
            HTTP_REQUEST_DURATION.labels(method=request.method, path=label).observe(time.perf_counter() - started)

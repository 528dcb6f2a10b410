"""Single-line JSON log formatter.

Enabled with ``PULSE_API_STRUCTURED_LOGGING=true``.  Each record becomes one
JSON object with ``timestamp``, ``level``, ``logger`` and ``message``, plus
``trace_id``/``span_id`` from :class:`TraceLoggingFilter`, the access-log
``request`` block, and ``exc_info`` when an exception is attached.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_OPTIONAL_FIELDS = ("trace_id", "span_id", "request")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)

"""JSON log formatter for log aggregation.

Emits each log record as a single-line JSON object.  Enable with
``RENEWALS_STRUCTURED_LOGGING=true``.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "renewal_engine.upgrade.paypal_suspended",
        "message": "Subscription ID 42 suspended ...",
        "subscription_id": 42,    // present when passed via ``extra``
        "order_id": 7,            // present when passed via ``extra``
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

_CONTEXT_FIELDS = ("subscription_id", "order_id", "hook", "source")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)

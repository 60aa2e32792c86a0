"""Logging setup."""

from __future__ import annotations

import logging

from renewal_engine.config import Settings
from renewal_engine.telemetry.json_formatter import JSONFormatter

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    """Install a single stderr handler on the root logger.

    Uses :class:`JSONFormatter` when ``structured_logging`` is enabled and a
    plain text format otherwise.  Calling it again replaces the handler.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)


__all__ = ["JSONFormatter", "configure_logging"]

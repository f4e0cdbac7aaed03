"""Logging setup. Modules log through logging.getLogger(__name__) and pass
structured fields via ``extra={"fields": {...}}``."""

import json
import logging

from config.settings import APP_VERSION, LOG_LEVEL

_configured = False


class KeyValueFormatter(logging.Formatter):
    """Render ``message | {"k": "v"}`` with the record's structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            line = f"{line} | {json.dumps(fields, default=str, sort_keys=True)}"
        return line


def configure_logging(level: str = None) -> None:
    """Install the gateway handler on the root logger. Safe to call multiple times."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(KeyValueFormatter(
        fmt=f"%(asctime)s [%(levelname)s] %(name)s (v{APP_VERSION}): %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel((level or LOG_LEVEL).upper())
    _configured = True

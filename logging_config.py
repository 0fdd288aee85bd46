from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "robot_id",
    "datagram_bytes",
    "reason",
    "point_count",
    "batch_size",
    "measurement",
    "state",
    "error_count",
    "local_port",
    "db_address",
    "db_name",
)

_LOG_FORMAT = "%(asctime)sZ | %(levelname)s | %(threadName)s | %(name)s | %(message)s"

_configured = False


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(char.isspace() for char in text):
        return '"' + text.replace('"', '\\"') + '"'
    return text


class ContextualFormatter(logging.Formatter):
    """Formats records as ``message | key=value ...`` using UTC timestamps.

    Only the configured extra keys are rendered; values containing
    whitespace are quoted so decode reasons stay a single field.
    """

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is None:
                continue
            fields.append(f"{key}={_render_value(value)}")
        if not fields:
            return message
        return f"{message} | {' '.join(fields)}"


def configure_logging(level: str | int | None = None) -> None:
    """Configure application-wide logging with contextual formatting."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    log_level = level if level is not None else settings.log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": _LOG_FORMAT,
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            # The InfluxDB client logs every retry attempt through urllib3.
            "loggers": {
                "urllib3": {"level": "WARNING"},
                "influxdb_client": {"level": "WARNING"},
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True

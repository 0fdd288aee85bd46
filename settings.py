from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_LOCAL_PORT_ENV = "ROBOT_UDP_PORT"
_DB_ADDRESS_ENV = "INFLUX_ADDRESS"
_DB_NAME_ENV = "INFLUX_DATABASE"
_DB_USERNAME_ENV = "INFLUX_USERNAME"
_DB_PASSWORD_ENV = "INFLUX_PASSWORD"
_BATCH_SIZE_ENV = "SINK_BATCH_SIZE"
_FLUSH_INTERVAL_ENV = "SINK_FLUSH_INTERVAL"
_QUEUE_SIZE_ENV = "SINK_QUEUE_SIZE"
_MAX_RETRIES_ENV = "SINK_MAX_RETRIES"
_RETRY_INTERVAL_ENV = "SINK_RETRY_INTERVAL"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_LOCAL_PORT = 10000
DEFAULT_DB_ADDRESS = "http://localhost:8086/"
DEFAULT_DB_NAME = "test"


@dataclass(frozen=True)
class Settings:
    local_port: int
    db_address: str
    db_name: str
    db_username: Optional[str]
    db_password: Optional[str]
    batch_size: int
    flush_interval: float
    queue_size: int
    max_retries: int
    retry_interval: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_port(default: int) -> int:
    port = _read_int_env(_LOCAL_PORT_ENV, default)
    return port if port <= 65535 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        local_port=_read_port(DEFAULT_LOCAL_PORT),
        db_address=_read_str_env(_DB_ADDRESS_ENV, DEFAULT_DB_ADDRESS),
        db_name=_read_str_env(_DB_NAME_ENV, DEFAULT_DB_NAME),
        db_username=_read_optional_env(_DB_USERNAME_ENV, None),
        db_password=_read_optional_env(_DB_PASSWORD_ENV, None),
        batch_size=_read_int_env(_BATCH_SIZE_ENV, 100),
        flush_interval=_read_float_env(_FLUSH_INTERVAL_ENV, 1.0),
        queue_size=_read_int_env(_QUEUE_SIZE_ENV, 1000),
        max_retries=_read_int_env(_MAX_RETRIES_ENV, 5, minimum=0),
        retry_interval=_read_float_env(_RETRY_INTERVAL_ENV, 1.0),
        log_level=_read_log_level("INFO"),
    )

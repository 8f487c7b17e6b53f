from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_MQTT_HOST_ENV = "MQTT_BROKER_HOST"
_MQTT_PORT_ENV = "MQTT_BROKER_PORT"
_MQTT_TOPIC_ENV = "MQTT_TOPIC"
_MQTT_USERNAME_ENV = "MQTT_USERNAME"
_MQTT_PASSWORD_ENV = "MQTT_PASSWORD"
_MQTT_RECONNECT_ENV = "MQTT_RECONNECT_SECONDS"
_STORE_DIR_ENV = "STORE_PERSISTENCE_DIR"
_RAW_MAX_DOCUMENTS_ENV = "RAW_MAX_DOCUMENTS"
_RAW_MAX_BYTES_ENV = "RAW_MAX_BYTES"
_COMPLETED_WINDOWS_ENV = "ROLLUP_COMPLETED_WINDOWS"
_INGEST_ENABLED_ENV = "INGEST_ENABLED"
_SCHEDULER_ENABLED_ENV = "SCHEDULER_ENABLED"
_CORS_ORIGINS_ENV = "CORS_ALLOW_ORIGINS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    mqtt_host: str
    mqtt_port: int
    mqtt_topic: str
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_reconnect_seconds: float
    store_persistence_dir: Optional[str]
    raw_max_documents: int
    raw_max_bytes: int
    rollup_completed_windows: bool
    ingest_enabled: bool
    scheduler_enabled: bool
    cors_allow_origins: tuple[str, ...]
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


def _read_positive_int(name: str, default: int) -> int:
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
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
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


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_origins(default: str) -> tuple[str, ...]:
    raw = _read_str_env(_CORS_ORIGINS_ENV, default)
    origins = tuple(part.strip() for part in raw.split(",") if part.strip())
    return origins or (default,)


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
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "localhost"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_topic=_read_str_env(_MQTT_TOPIC_ENV, "sensors/environment"),
        mqtt_username=_read_optional_env(_MQTT_USERNAME_ENV, None),
        mqtt_password=_read_optional_env(_MQTT_PASSWORD_ENV, None),
        mqtt_reconnect_seconds=_read_positive_float(_MQTT_RECONNECT_ENV, 5.0),
        store_persistence_dir=_read_optional_env(_STORE_DIR_ENV, "./tmp/store"),
        raw_max_documents=_read_positive_int(_RAW_MAX_DOCUMENTS_ENV, 5000),
        raw_max_bytes=_read_positive_int(_RAW_MAX_BYTES_ENV, 10 * 1024 * 1024),
        rollup_completed_windows=_read_bool(_COMPLETED_WINDOWS_ENV, False),
        ingest_enabled=_read_bool(_INGEST_ENABLED_ENV, True),
        scheduler_enabled=_read_bool(_SCHEDULER_ENABLED_ENV, True),
        cors_allow_origins=_read_origins("*"),
        log_level=_read_log_level("INFO"),
    )
